"""
SOCKS5 链式连接器

本模块按顺序通过代理链建立隧道：

1. 拒绝空的代理链
2. 按解析策略解析代理主机名和最终目标（不修改调用方的列表）
3. 打开到第一跳的传输连接
4. 第 i 跳的 CONNECT 目标是第 i+1 跳，成功后同一条传输即承载到第 i+1 跳的字节
5. 最后一跳的 CONNECT 目标是最终目标
6. 全部成功后把传输交给 TunnelHandle；任何失败都关闭已打开的传输，
   不会返回半成品隧道

使用示例:
    chain = [ProxyEndpoint.from_host('10.0.0.1', 1080),
             ProxyEndpoint.from_host('proxy2.example.com', 1080, 'user', 'secret')]
    tunnel = await connect(chain, 'example.com', 80)
    await tunnel.write(b'GET / HTTP/1.0\\r\\n\\r\\n')
"""

import asyncio
import logging
import uuid
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence, Union

from .address import AddressSpec, ProxyEndpoint, validate_port
from .config import ConnectOptions
from .errors import ConfigError, ConnectError, Phase, Socks5Error
from .handle import TunnelHandle
from .logger import log_context
from .resolution import Resolver
from .session import HandshakeSession
from .transport import Transport, open_transport

logger = logging.getLogger('sockschain-chain')

Opener = Callable[[str, int], Awaitable[Transport]]


class ChainConnector:
    """
    链式连接器

    不持有任何跨连接的可变状态，同一个实例可以被并发地用于多次连接。

    Attributes:
        options: 连接选项
        opener: 打开传输的协作者，签名为 async (host, port) -> Transport
        resolver: 主机名解析协作者
    """

    def __init__(self, options: Optional[ConnectOptions] = None, opener: Optional[Opener] = None,
                 resolver: Optional[Resolver] = None):
        self.options = options or ConnectOptions()
        self.opener = opener or partial(open_transport, timeout=None, io_timeout=self.options.io_timeout)
        self.resolver = resolver or Resolver()

    async def connect(self, chain: Sequence[ProxyEndpoint], target: Union[str, AddressSpec],
                      port: int) -> TunnelHandle:
        """
        通过代理链连接到 target:port

        Args:
            chain: 有序的代理列表
            target: 目标主机名、IP 字面量或 AddressSpec
            port: 目标端口

        Returns:
            TunnelHandle: 独占最终传输的隧道句柄

        Raises:
            ConfigError: 代理链为空或参数无效
            ResolutionError: 目标主机名本地解析失败
            ConnectError: 无法打开到第一跳的传输
            ProtocolError / AuthError / ConnectReplyError: 某一跳握手失败
        """
        if not chain:
            raise ConfigError("代理链不能为空")
        validate_port(port)

        with log_context(attempt=uuid.uuid4().hex[:8], target=f"{target}:{port}"):
            policy = self.options.resolution
            proxies = await policy.resolve_chain(chain, self.resolver)
            final_target = await policy.resolve_target(target, self.resolver)
            return await self._tunnel(proxies, final_target, port)

    async def _open(self, endpoint: ProxyEndpoint) -> Transport:
        try:
            return await asyncio.wait_for(
                self.opener(endpoint.host, endpoint.port),
                timeout=self.options.connect_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectError(f"连接到代理 {endpoint} 超时（{self.options.connect_timeout} 秒）",
                               hop=0, phase=Phase.CONNECT) from None
        except OSError as e:
            raise ConnectError(f"无法连接到代理 {endpoint}: {e}", hop=0, phase=Phase.CONNECT) from e

    async def _tunnel(self, proxies, target: AddressSpec, port: int) -> TunnelHandle:
        logger.info(f"建立 {len(proxies)} 跳隧道: "
                    f"{' -> '.join(str(p) for p in proxies)} -> {target}:{port}")

        transport = await self._open(proxies[0])
        hop = 0
        try:
            reply = None
            for hop, endpoint in enumerate(proxies):
                if hop + 1 < len(proxies):
                    next_endpoint = proxies[hop + 1]
                    hop_target, hop_port = next_endpoint.address, next_endpoint.port
                else:
                    hop_target, hop_port = target, port

                with log_context(hop=hop + 1):
                    session = HandshakeSession(transport, hop)
                    reply = await session.run(endpoint.credentials, hop_target, hop_port)

            logger.info(f"隧道已建立: {target}:{port}")
            return TunnelHandle(transport, tuple(proxies), target, port,
                                reply.bound_address, reply.bound_port)
        except Socks5Error as e:
            e.locate(hop=hop)
            logger.warning(f"隧道建立失败: {e}")
            await transport.close()
            raise
        except asyncio.CancelledError:
            logger.info(f"第 {hop + 1} 跳握手被取消，关闭传输")
            await transport.close()
            raise
        except BaseException:
            await transport.close()
            raise


async def connect(chain: Sequence[ProxyEndpoint], target_host: Union[str, AddressSpec], target_port: int,
                  options: Optional[ConnectOptions] = None, *, opener: Optional[Opener] = None,
                  resolver: Optional[Resolver] = None) -> TunnelHandle:
    """通过代理链连接（便捷函数）"""
    connector = ChainConnector(options, opener, resolver)
    return await connector.connect(chain, target_host, target_port)


async def connect_with_remote_dns(chain: Sequence[ProxyEndpoint], target_host: str, target_port: int,
                                  options: Optional[ConnectOptions] = None, *,
                                  opener: Optional[Opener] = None,
                                  resolver: Optional[Resolver] = None) -> TunnelHandle:
    """通过代理链连接，目标主机名交给最后一跳代理解析（便捷函数）"""
    options = (options or ConnectOptions()).with_remote_dns()
    connector = ChainConnector(options, opener, resolver)
    return await connector.connect(chain, target_host, target_port)
