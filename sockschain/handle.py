"""
隧道句柄

链式连接全部成功后返回给调用方的对象。句柄独占最终的传输，握手状态已经
全部消耗完毕，之后的读写就是与目标主机之间的原始字节流。
"""

import logging
import ssl
from typing import Optional, Tuple

from .address import AddressSpec, ProxyEndpoint
from .transport import Transport

logger = logging.getLogger('sockschain-handle')


class TunnelHandle:
    """
    端到端隧道

    通过组合而非继承持有传输，对外提供相同的读写接口。支持 async with，
    离开上下文时关闭隧道。

    Attributes:
        chain: 实际使用的（已解析的）代理链
        target: 最终目标地址
        port: 最终目标端口
        bound_address: 最后一跳返回的绑定地址
        bound_port: 最后一跳返回的绑定端口
    """

    def __init__(self, transport: Transport, chain: Tuple[ProxyEndpoint, ...], target: AddressSpec,
                 port: int, bound_address: Optional[AddressSpec] = None, bound_port: int = 0):
        self._transport = transport
        self.chain = chain
        self.target = target
        self.port = port
        self.bound_address = bound_address
        self.bound_port = bound_port
        self._closed = False

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, max_bytes: int = 65536) -> bytes:
        """读取最多 max_bytes 字节，隧道关闭时返回 b''"""
        if self._closed:
            raise ConnectionError("隧道已关闭")
        return await self._transport.read(max_bytes)

    async def write(self, data: bytes) -> int:
        if self._closed:
            raise ConnectionError("隧道已关闭")
        return await self._transport.write(data)

    async def start_tls(self, ssl_context: Optional[ssl.SSLContext] = None, server_hostname: str = None):
        """
        在隧道上升级 TLS

        Args:
            ssl_context: SSL 上下文（默认使用 ssl.create_default_context()）
            server_hostname: 用于 SNI 和证书校验的主机名，默认为目标主机
        """
        if ssl_context is None:
            ssl_context = ssl.create_default_context()
        if server_hostname is None:
            server_hostname = self.target.host
        start_tls = getattr(self._transport, 'start_tls', None)
        if start_tls is None:
            raise TypeError(f"传输 {type(self._transport).__name__} 不支持 TLS 升级")
        await start_tls(ssl_context, server_hostname=server_hostname)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        logger.debug(f"关闭隧道: {self.target}:{self.port}")
        await self._transport.close()

    async def __aenter__(self) -> 'TunnelHandle':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def __repr__(self):
        hops = ' -> '.join(str(endpoint) for endpoint in self.chain)
        state = 'closed' if self._closed else 'open'
        return f"<TunnelHandle {hops} -> {self.target}:{self.port} ({state})>"
