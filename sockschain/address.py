"""
SOCKS5 链式代理 - 地址与代理端点

本模块定义了连接请求中交换的地址表示 AddressSpec，以及描述单跳代理的
ProxyEndpoint。两者都是不可变数据类，可以在并发的连接尝试之间安全共享。
"""

import ipaddress
from dataclasses import dataclass, field, replace
from typing import Optional
from urllib.parse import unquote, urlparse

from .errors import ConfigError, ValidationError
from .protocol import DEFAULT_PORT, MAX_FIELD_LENGTH, MAX_PORT, AddressType


def validate_port(port: int) -> int:
    """检查端口范围 (0-65535)"""
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= MAX_PORT:
        raise ValidationError(f"无效的端口: {port!r}")
    return port


@dataclass(frozen=True)
class AddressSpec:
    """
    SOCKS5 地址

    带标签的地址：IPv4 字面量、IPv6 字面量或域名。IP 类型的 host 保存规范化
    后的文本形式，域名保存原始字符串。

    Attributes:
        type: 地址类型（AddressType）
        host: 地址文本
    """
    type: AddressType
    host: str

    def __post_init__(self):
        if self.type == AddressType.DOMAIN:
            encoded = self.host.encode('utf-8')
            if not encoded:
                raise ValidationError("域名不能为空")
            if len(encoded) > MAX_FIELD_LENGTH:
                raise ValidationError(f"域名超过 {MAX_FIELD_LENGTH} 字节: {len(encoded)}")
            return

        try:
            ip = ipaddress.ip_address(self.host)
        except ValueError:
            raise ValidationError(f"无效的 IP 地址: {self.host!r}") from None

        expected = AddressType.IPV4 if ip.version == 4 else AddressType.IPV6
        if expected != self.type:
            raise ValidationError(f"地址 {self.host} 与类型 {self.type.name} 不符")
        object.__setattr__(self, 'host', str(ip))

    @classmethod
    def ipv4(cls, host: str) -> 'AddressSpec':
        return cls(AddressType.IPV4, host)

    @classmethod
    def ipv6(cls, host: str) -> 'AddressSpec':
        return cls(AddressType.IPV6, host)

    @classmethod
    def domain(cls, name: str) -> 'AddressSpec':
        return cls(AddressType.DOMAIN, name)

    @classmethod
    def _received_domain(cls, name: str) -> 'AddressSpec':
        """
        代理响应中的绑定域名

        长度已由单字节前缀限定，内容只用于诊断，这里不做编码方向的校验
        （允许空名和解码替换字符）。
        """
        address = object.__new__(cls)
        object.__setattr__(address, 'type', AddressType.DOMAIN)
        object.__setattr__(address, 'host', name)
        return address

    @classmethod
    def from_host(cls, host: str) -> 'AddressSpec':
        """
        根据文本自动判断地址类型

        IP 字面量（包括带方括号的 IPv6）总是编码为 IPv4/IPv6，其余文本视为域名。
        """
        text = host.strip()
        if text.startswith('[') and text.endswith(']'):
            text = text[1:-1]
        try:
            ip = ipaddress.ip_address(text)
        except ValueError:
            return cls.domain(text)
        if ip.version == 4:
            return cls.ipv4(str(ip))
        return cls.ipv6(str(ip))

    @classmethod
    def from_packed(cls, data: bytes) -> 'AddressSpec':
        """从 4 或 16 字节的打包地址创建"""
        return cls.from_host(str(ipaddress.ip_address(data)))

    @property
    def is_ip(self) -> bool:
        return self.type != AddressType.DOMAIN

    def packed(self) -> bytes:
        """
        地址主体的线路字节

        IP 地址返回打包后的 4/16 字节；域名返回 UTF-8 编码（不含长度前缀）。
        """
        if self.type == AddressType.DOMAIN:
            return self.host.encode('utf-8')
        return ipaddress.ip_address(self.host).packed

    def __str__(self):
        if self.type == AddressType.IPV6:
            return f"[{self.host}]"
        return self.host


@dataclass(frozen=True)
class Credentials:
    """用户名/密码凭据（密码不出现在 repr 中）"""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ProxyEndpoint:
    """
    代理链中的一跳

    一旦链式连接开始便不可变。代理链是 ProxyEndpoint 的有序序列，
    第一个元素是第一条物理连接的目标。

    Attributes:
        address: 代理地址
        port: 代理端口
        credentials: 可选的用户名/密码凭据
    """
    address: AddressSpec
    port: int
    credentials: Optional[Credentials] = None

    def __post_init__(self):
        validate_port(self.port)

    @classmethod
    def from_host(cls, host: str, port: int = DEFAULT_PORT, username: str = None,
                  password: str = None) -> 'ProxyEndpoint':
        credentials = None
        if username is not None:
            credentials = Credentials(username, password or '')
        return cls(AddressSpec.from_host(host), port, credentials)

    @property
    def host(self) -> str:
        return self.address.host

    def with_address(self, address: AddressSpec) -> 'ProxyEndpoint':
        """返回替换了地址的新端点（原对象不变）"""
        return replace(self, address=address)

    def __str__(self):
        return f"{self.address}:{self.port}"


def parse_proxy_url(url: str) -> ProxyEndpoint:
    """
    解析代理 URL

    支持的格式: socks5://[用户名[:密码]@]主机[:端口]，端口默认 1080。

    Args:
        url: 代理 URL

    Returns:
        ProxyEndpoint: 解析后的代理端点

    Raises:
        ConfigError: URL 协议不支持或缺少主机
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() != 'socks5':
        raise ConfigError(f"不支持的代理协议: {parsed.scheme or url!r}")
    if not parsed.hostname:
        raise ConfigError(f"代理 URL 缺少主机: {url!r}")

    try:
        port = parsed.port or DEFAULT_PORT
    except ValueError:
        raise ConfigError(f"代理 URL 端口无效: {url!r}") from None

    username = unquote(parsed.username) if parsed.username is not None else None
    password = unquote(parsed.password) if parsed.password is not None else None
    return ProxyEndpoint.from_host(parsed.hostname, port, username, password)
