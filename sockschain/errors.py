"""
SOCKS5 链式代理 - 异常定义

所有对外抛出的错误都继承自 Socks5Error，并携带两个定位字段：
- hop: 出错的代理在链中的索引（从 0 开始），预检阶段的错误为 None
- phase: 出错的阶段（解析 / 连接 / 协商 / 认证 / 请求）

调用方只需要捕获 Socks5Error，即可根据 hop 和 phase 判断失败位置。
"""

from enum import Enum
from typing import Optional

from .protocol import REPLY_MESSAGES, ReplyCode


class Phase(str, Enum):
    """链式连接尝试的阶段"""
    RESOLUTION = "resolution"
    CONNECT = "connect"
    NEGOTIATE = "negotiate"
    AUTH = "auth"
    REQUEST = "request"


class Socks5Error(Exception):
    """
    SOCKS5 错误基类

    Attributes:
        message: 错误描述
        hop: 出错的代理索引（从 0 开始）
        phase: 出错的阶段
    """

    def __init__(self, message: str, hop: Optional[int] = None, phase: Optional[Phase] = None):
        super().__init__(message)
        self.message = message
        self.hop = hop
        self.phase = phase

    def locate(self, hop: Optional[int] = None, phase: Optional[Phase] = None) -> 'Socks5Error':
        """
        补充定位信息（已设置的字段不会被覆盖）

        Returns:
            Socks5Error: 异常自身，便于 raise 链式调用
        """
        if self.hop is None:
            self.hop = hop
        if self.phase is None:
            self.phase = phase
        return self

    def __str__(self):
        parts = []
        if self.hop is not None:
            parts.append(f"第 {self.hop + 1} 跳")
        if self.phase is not None:
            parts.append(self.phase.value)
        if parts:
            return f"[{' / '.join(parts)}] {self.message}"
        return self.message


class ConfigError(Socks5Error):
    """调用方配置错误（空代理链、字段超长等），不应重试"""


class ValidationError(ConfigError):
    """字段不满足协议限制（长度、端口范围等）"""


class ResolutionError(Socks5Error):
    """DNS 解析失败或超时"""


class ConnectError(Socks5Error):
    """无法建立到代理的传输连接"""


class ProtocolError(Socks5Error):
    """代理返回了格式错误或意外的字节"""


class TruncatedMessage(ProtocolError):
    """
    消息不完整

    Attributes:
        needed: 解码还需要的最少字节数
    """

    def __init__(self, needed: int, message: str = None):
        super().__init__(message or f"消息不完整，还需要 {needed} 字节")
        self.needed = needed


class AuthError(Socks5Error):
    """代理拒绝了用户名/密码"""


class ConnectReplyError(Socks5Error):
    """
    代理返回了非成功的响应码

    Attributes:
        code: 代理返回的 ReplyCode
    """

    def __init__(self, code: ReplyCode, hop: Optional[int] = None, phase: Optional[Phase] = None):
        super().__init__(f"代理响应失败: {REPLY_MESSAGES.get(code, hex(code))} (0x{int(code):02x})",
                         hop, phase)
        self.code = code
