"""
SOCKS5 链式代理 - 传输层

本模块提供链式连接器使用的默认传输实现：基于 asyncio 流的 TCP 连接。

传输协议（连接器只依赖这些方法）:
- await read(max_bytes) -> bytes，对端正常关闭时返回 b''
- await write(data) -> 写入的字节数
- await close()，可重复调用

测试和其他集成可以注入任何满足该协议的对象。
"""

import asyncio
import logging
import ssl
from typing import Optional, Protocol

logger = logging.getLogger('sockschain-transport')

DEFAULT_CONNECT_TIMEOUT = 30.0


class Transport(Protocol):
    """链式连接器所需的最小传输接口"""

    async def read(self, max_bytes: int) -> bytes: ...

    async def write(self, data: bytes) -> int: ...

    async def close(self) -> None: ...


class StreamTransport:
    """
    基于 asyncio.StreamReader/StreamWriter 的传输

    写操作由写入锁串行化，一条消息的字节永远不会与另一条交错。

    Attributes:
        reader: 异步流读取器
        writer: 异步流写入器
        io_timeout: 单次读取的超时时间（秒），None 表示不限
        write_lock: 写入锁
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 io_timeout: Optional[float] = None):
        self.reader = reader
        self.writer = writer
        self.io_timeout = io_timeout
        self.write_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, max_bytes: int) -> bytes:
        """读取最多 max_bytes 字节，连接关闭时返回 b''"""
        if self.io_timeout is None:
            return await self.reader.read(max_bytes)
        return await asyncio.wait_for(self.reader.read(max_bytes), timeout=self.io_timeout)

    async def write(self, data: bytes) -> int:
        """写入全部数据并等待缓冲区排空"""
        async with self.write_lock:
            self.writer.write(data)
            await self.writer.drain()
        return len(data)

    async def start_tls(self, ssl_context: ssl.SSLContext, server_hostname: str = None):
        """
        将现有连接升级为 TLS

        升级后 reader/writer 继续使用，握手由 asyncio 完成。
        """
        logger.info(f"升级到 TLS 连接（server_hostname={server_hostname}）")
        async with self.write_lock:
            await self.writer.start_tls(ssl_context, server_hostname=server_hostname)
        logger.debug("TLS 已建立")

    async def close(self):
        """关闭连接（可重复调用）"""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"关闭连接时出错: {e}")


async def open_transport(host: str, port: int, timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
                         io_timeout: Optional[float] = None) -> StreamTransport:
    """
    打开到 host:port 的 TCP 连接

    Args:
        host: 目标主机（IP 字面量或主机名）
        port: 目标端口
        timeout: 建立连接的超时时间（秒）
        io_timeout: 之后每次读取的超时时间（秒）

    Raises:
        OSError: 连接失败
        asyncio.TimeoutError: 连接超时
    """
    logger.debug(f"正在连接到 {host}:{port}")
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port),
        timeout=timeout
    )
    logger.debug(f"已连接到 {host}:{port}（本地地址 {writer.get_extra_info('sockname')}）")
    return StreamTransport(reader, writer, io_timeout)
