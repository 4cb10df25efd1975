"""
内存中的 SOCKS5 代理测试替身

- FakeProxy: 按脚本响应的代理，记录收到的问候、认证和连接请求
- FakeTransport: 满足传输协议的内存连接，CONNECT 成功后把后续字节转交给下一跳
- FakeNetwork: 以 (host, port) 为键的假网络，提供 opener
- FakeResolver: 基于字典的解析器
"""

import asyncio
import struct
from typing import Callable, Dict, List, Optional, Tuple

from sockschain.address import AddressSpec
from sockschain.codec import (
    decode_connect_request, decode_greeting, decode_userpass_request, encode_address,
)
from sockschain.errors import ResolutionError, TruncatedMessage
from sockschain.protocol import AuthMethod, ReplyCode


def encode_reply(code: int, address: AddressSpec = None, port: int = 0) -> bytes:
    """构造 CONNECT 响应字节"""
    address = address or AddressSpec.ipv4('0.0.0.0')
    return bytes([0x05, code, 0x00]) + encode_address(address) + struct.pack('>H', port)


class FakeProxy:
    """
    按脚本响应的 SOCKS5 代理

    Attributes:
        method: 对问候的响应方法（可以是未提供的方法，用于测试）
        credentials: 接受的 (用户名, 密码)，None 表示任何凭据都接受
        reply_code: CONNECT 响应码
        bound: 成功响应中的绑定地址和端口
        stall: 收到问候后不再响应
        early_data: 紧跟在成功响应后发送的字节
    """

    def __init__(self, name: str, method: int = AuthMethod.NO_AUTH, credentials: Tuple[str, str] = None,
                 reply_code: int = ReplyCode.SUCCEEDED, bound: Tuple[str, int] = ('10.9.9.9', 4242),
                 stall: bool = False, early_data: bytes = b''):
        self.name = name
        self.method = method
        self.credentials = credentials
        self.reply_code = reply_code
        self.bound = bound
        self.stall = stall
        self.early_data = early_data

        self.greetings: List[Tuple[int, ...]] = []
        self.auth_attempts: List[Tuple[str, str]] = []
        self.requests: List[tuple] = []
        self.greeted = asyncio.Event()

    def conversation(self) -> 'Conversation':
        return Conversation(self)

    def __repr__(self):
        return f"<FakeProxy {self.name}>"


class Conversation:
    """单条连接上与 FakeProxy 的对话状态"""

    def __init__(self, proxy: FakeProxy):
        self.proxy = proxy
        self.stage = 'greeting'
        self.buffer = b''

    def feed(self, data: bytes):
        """
        处理收到的字节

        Returns:
            (响应字节, 是否关闭连接, CONNECT 成功时的 (地址, 端口))
        """
        self.buffer += data
        response = b''
        while self.buffer and self.stage not in ('closed', 'stalled'):
            try:
                out, close, connected = self._step()
            except TruncatedMessage:
                break
            response += out
            if close:
                self.stage = 'closed'
                return response, True, None
            if connected is not None:
                return response, False, connected
        return response, False, None

    def _step(self):
        proxy = self.proxy
        if self.stage == 'greeting':
            methods, consumed = decode_greeting(self.buffer)
            self.buffer = self.buffer[consumed:]
            proxy.greetings.append(methods)
            proxy.greeted.set()
            if proxy.stall:
                self.stage = 'stalled'
                return b'', False, None
            if proxy.method == AuthMethod.NO_ACCEPTABLE:
                return bytes([0x05, 0xFF]), True, None
            self.stage = 'auth' if proxy.method == AuthMethod.USERNAME_PASSWORD else 'request'
            return bytes([0x05, proxy.method]), False, None

        if self.stage == 'auth':
            pair, consumed = decode_userpass_request(self.buffer)
            self.buffer = self.buffer[consumed:]
            proxy.auth_attempts.append(pair)
            if proxy.credentials is not None and pair != proxy.credentials:
                return bytes([0x01, 0x01]), True, None
            self.stage = 'request'
            return bytes([0x01, 0x00]), False, None

        request, consumed = decode_connect_request(self.buffer)
        self.buffer = self.buffer[consumed:]
        proxy.requests.append(request)
        if proxy.reply_code != ReplyCode.SUCCEEDED:
            return encode_reply(proxy.reply_code), True, None
        self.stage = 'connected'
        reply = encode_reply(ReplyCode.SUCCEEDED, AddressSpec.from_host(proxy.bound[0]), proxy.bound[1])
        _command, address, port = request
        return reply + proxy.early_data, False, (address, port)


class FakeTransport:
    """
    内存传输

    Attributes:
        max_chunk: 每次 read 最多返回的字节数（模拟短读）
        writes: 所有写入的消息
        tls: start_tls 的调用记录
    """

    def __init__(self, network: 'FakeNetwork', proxy: FakeProxy, max_chunk: int = None):
        self.network = network
        self.conversation: Optional[Conversation] = proxy.conversation()
        self.responder: Optional[Callable[[bytes], Optional[bytes]]] = None
        self.max_chunk = max_chunk
        self.inbox = bytearray()
        self.writes: List[bytes] = []
        self.tls: List[tuple] = []
        self.closed = False
        self.eof = False
        self.close_calls = 0
        self._event = asyncio.Event()

    def _push(self, data: bytes, eof: bool = False):
        self.inbox += data
        self.eof = self.eof or eof
        self._event.set()

    async def write(self, data: bytes) -> int:
        if self.closed:
            raise ConnectionResetError("传输已关闭")
        self.writes.append(bytes(data))

        if self.conversation is None:
            if self.responder is None:
                self._push(data)
            else:
                self._push(self.responder(bytes(data)) or b'', eof=True)
            return len(data)

        response, close, connected = self.conversation.feed(bytes(data))
        self._push(response, eof=close)
        if connected is not None:
            address, port = connected
            next_proxy = self.network.lookup(address.host, port)
            if next_proxy is not None:
                self.conversation = next_proxy.conversation()
            else:
                self.conversation = None
                self.responder = self.network.servers.get((address.host, port))
        return len(data)

    async def read(self, max_bytes: int) -> bytes:
        while not self.inbox and not self.eof and not self.closed:
            self._event.clear()
            await self._event.wait()
        limit = max_bytes if self.max_chunk is None else min(max_bytes, self.max_chunk)
        chunk = bytes(self.inbox[:limit])
        del self.inbox[:limit]
        return chunk

    async def start_tls(self, ssl_context, server_hostname=None):
        self.tls.append((ssl_context, server_hostname))

    async def close(self):
        self.close_calls += 1
        self.closed = True
        self._event.set()


class FakeNetwork:
    """
    假网络

    Attributes:
        proxies: (host, port) -> FakeProxy
        servers: (host, port) -> 目标服务器响应函数
        opened: opener 收到的所有 (host, port)
        transports: 打开的所有传输
    """

    def __init__(self, max_chunk: int = None):
        self.proxies: Dict[Tuple[str, int], FakeProxy] = {}
        self.servers: Dict[Tuple[str, int], Callable[[bytes], bytes]] = {}
        self.opened: List[Tuple[str, int]] = []
        self.transports: List[FakeTransport] = []
        self.max_chunk = max_chunk

    def add(self, host: str, port: int, proxy: FakeProxy) -> FakeProxy:
        self.proxies[(host, port)] = proxy
        return proxy

    def lookup(self, host: str, port: int) -> Optional[FakeProxy]:
        return self.proxies.get((host, port))

    async def open(self, host: str, port: int) -> FakeTransport:
        self.opened.append((host, port))
        proxy = self.lookup(host, port)
        if proxy is None:
            raise ConnectionRefusedError(f"连接被拒绝: {host}:{port}")
        transport = FakeTransport(self, proxy, self.max_chunk)
        self.transports.append(transport)
        return transport


class FakeResolver:
    """基于字典的解析器，记录每次调用"""

    def __init__(self, table: Dict[str, List[str]] = None):
        self.table = dict(table or {})
        self.calls: List[str] = []

    async def resolve(self, hostname: str, timeout: float = None) -> List[str]:
        self.calls.append(hostname)
        if hostname not in self.table:
            raise ResolutionError(f"无法解析 {hostname}")
        return list(self.table[hostname])
