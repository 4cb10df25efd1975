"""
SOCKS5 握手会话

本模块定义了单跳代理的握手状态机。会话在一个已经打开的传输上运行，
使用编解码模块构建和解析消息。

状态流转:
    IDLE -> GREETING_SENT -> METHOD_CHOSEN -> [AUTHENTICATING -> AUTHENTICATED]
         -> CONNECT_SENT -> ESTABLISHED
    任意步骤失败 -> FAILED

传输所有权:
会话只是借用传输。握手成功时不会关闭传输（由链式连接器继续使用）；
握手失败或被取消时，run() 会关闭它所借用的传输。
"""

import logging
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple, TypeVar

from . import codec
from .address import AddressSpec, Credentials
from .codec import ConnectReply
from .errors import (
    AuthError, ConnectReplyError, Phase, ProtocolError, Socks5Error, TruncatedMessage,
)
from .protocol import AuthMethod, Command
from .transport import Transport

logger = logging.getLogger('sockschain-session')

T = TypeVar('T')


class SessionState(Enum):
    """握手会话状态"""
    IDLE = "idle"
    GREETING_SENT = "greeting_sent"
    METHOD_CHOSEN = "method_chosen"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CONNECT_SENT = "connect_sent"
    ESTABLISHED = "established"
    FAILED = "failed"


def offered_methods(credentials: Optional[Credentials]) -> Tuple[AuthMethod, ...]:
    """根据是否有凭据决定向代理提供的认证方法"""
    if credentials is None:
        return (AuthMethod.NO_AUTH,)
    return (AuthMethod.NO_AUTH, AuthMethod.USERNAME_PASSWORD)


class HandshakeSession:
    """
    单跳 SOCKS5 握手

    每个操作都恰好执行一次写入，随后执行一次或多次读取；不做任何重试，
    传输层的读写错误原样向上传播。

    Attributes:
        transport: 借用的传输
        hop: 该会话对应的代理索引（仅用于日志和错误定位）
        state: 当前状态
        method: 协商得到的认证方法
    """

    def __init__(self, transport: Transport, hop: int = 0):
        self.transport = transport
        self.hop = hop
        self.state = SessionState.IDLE
        self.method: Optional[AuthMethod] = None
        self._offered: Tuple[AuthMethod, ...] = ()

    def _expect_state(self, operation: str, *states: SessionState):
        if self.state not in states:
            raise RuntimeError(
                f"{operation} 不能在状态 {self.state.value} 下调用"
                f"（需要 {', '.join(s.value for s in states)}）"
            )

    async def _receive(self, decoder: Callable[[bytes], Tuple[T, int]]) -> T:
        """
        读取并解码一条消息

        每次只读取解码器声明还缺少的字节数，不会读到消息之后的数据。
        """
        buffer = b''
        while True:
            try:
                value, _ = decoder(buffer)
                return value
            except TruncatedMessage as e:
                chunk = await self.transport.read(e.needed)
                if not chunk:
                    raise ProtocolError(
                        f"代理在消息中途关闭了连接（已收到 {len(buffer)} 字节）"
                    ) from None
                buffer += chunk

    async def negotiate(self, offered: Iterable[AuthMethod]) -> AuthMethod:
        """
        发送问候并读取代理选择的认证方法

        Args:
            offered: 提供给代理的认证方法

        Returns:
            AuthMethod: 代理选择的方法

        Raises:
            ProtocolError: 响应格式错误，或代理选择了未提供的方法
        """
        self._expect_state("negotiate", SessionState.IDLE)
        try:
            greeting = codec.encode_greeting(offered)
            self._offered = tuple(AuthMethod(m) for m in greeting[2:])

            await self.transport.write(greeting)
            self.state = SessionState.GREETING_SENT

            method = await self._receive(codec.decode_method_selection)
            if method not in self._offered:
                raise ProtocolError(f"代理选择了未提供的认证方法: {method.name}")
        except Socks5Error as e:
            self.state = SessionState.FAILED
            raise e.locate(self.hop, Phase.NEGOTIATE)
        except BaseException:
            self.state = SessionState.FAILED
            raise

        self.method = method
        self.state = SessionState.METHOD_CHOSEN
        logger.debug(f"第 {self.hop + 1} 跳协商认证方法: {method.name}")
        return method

    async def authenticate(self, credentials: Credentials):
        """
        执行用户名/密码认证（RFC 1929）

        只有在协商结果为 USERNAME_PASSWORD 时才能调用。

        Raises:
            AuthError: 代理拒绝了凭据
        """
        self._expect_state("authenticate", SessionState.METHOD_CHOSEN)
        if self.method != AuthMethod.USERNAME_PASSWORD:
            raise RuntimeError(f"协商方法为 {self.method.name}，不需要用户名/密码认证")

        self.state = SessionState.AUTHENTICATING
        try:
            await self.transport.write(codec.encode_userpass(credentials.username, credentials.password))
            success = await self._receive(codec.decode_userpass_reply)
            if not success:
                raise AuthError("代理拒绝了用户名/密码")
        except Socks5Error as e:
            self.state = SessionState.FAILED
            raise e.locate(self.hop, Phase.AUTH)
        except BaseException:
            self.state = SessionState.FAILED
            raise

        self.state = SessionState.AUTHENTICATED
        logger.debug(f"第 {self.hop + 1} 跳认证成功")

    async def request_connect(self, target: AddressSpec, port: int) -> ConnectReply:
        """
        发送 CONNECT 请求并读取响应

        先读取 4 字节头部，再按地址类型读取剩余部分。

        Returns:
            ConnectReply: 成功的响应（含绑定地址和端口）

        Raises:
            ConnectReplyError: 响应码不是 SUCCEEDED
            ProtocolError: 响应格式错误或被截断
        """
        if self.state == SessionState.METHOD_CHOSEN and self.method == AuthMethod.USERNAME_PASSWORD:
            raise RuntimeError("协商结果要求认证，必须先调用 authenticate")
        self._expect_state("request_connect", SessionState.METHOD_CHOSEN, SessionState.AUTHENTICATED)

        try:
            await self.transport.write(codec.encode_connect_request(Command.CONNECT, target, port))
            self.state = SessionState.CONNECT_SENT

            reply = await self._receive(codec.decode_connect_reply)
            if not reply.succeeded:
                raise ConnectReplyError(reply.code)
        except Socks5Error as e:
            self.state = SessionState.FAILED
            raise e.locate(self.hop, Phase.REQUEST)
        except BaseException:
            self.state = SessionState.FAILED
            raise

        self.state = SessionState.ESTABLISHED
        logger.debug(f"第 {self.hop + 1} 跳已连接到 {target}:{port}，"
                     f"绑定地址 {reply.bound_address}:{reply.bound_port}")
        return reply

    async def run(self, credentials: Optional[Credentials], target: AddressSpec, port: int) -> ConnectReply:
        """
        执行完整的单跳握手: 协商 -> (认证) -> 请求

        失败或被取消时关闭借用的传输。
        """
        established = False
        try:
            method = await self.negotiate(offered_methods(credentials))
            if method == AuthMethod.USERNAME_PASSWORD:
                await self.authenticate(credentials)
            reply = await self.request_connect(target, port)
            established = True
            return reply
        finally:
            if not established:
                self.state = SessionState.FAILED
                await self.transport.close()
