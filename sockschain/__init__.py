"""
SOCKS5 链式代理客户端

本包通过一条或多条 SOCKS5 代理建立到目标主机的隧道，并把结果作为普通的
双向字节流返回，可以在其上叠加 HTTP 或 TLS。

主要功能包括：
- SOCKS5 握手编解码（问候、用户名/密码认证、CONNECT 请求/响应）
- 单跳握手状态机
- 多跳代理链（每一跳的目标是下一跳）
- 本地 / 远程 DNS 解析策略
- HTTP 客户端连接工厂（https 自动升级 TLS）

使用示例：
    from sockschain import ProxyEndpoint, connect

    chain = [ProxyEndpoint.from_host('127.0.0.1', 1080)]
    async with await connect(chain, 'example.com', 80) as tunnel:
        await tunnel.write(b'GET / HTTP/1.0\\r\\nHost: example.com\\r\\n\\r\\n')
        print(await tunnel.read())
"""

from .address import AddressSpec, Credentials, ProxyEndpoint, parse_proxy_url
from .chain import ChainConnector, connect, connect_with_remote_dns
from .codec import ConnectReply
from .config import ChainConfig, ConnectOptions, load_chain_config
from .errors import (
    AuthError, ConfigError, ConnectError, ConnectReplyError, Phase, ProtocolError,
    ResolutionError, Socks5Error, TruncatedMessage, ValidationError,
)
from .handle import TunnelHandle
from .integration import ConnectionFactory, make_connection_factory
from .protocol import AddressType, AuthMethod, Command, ReplyCode
from .resolution import ResolutionPolicy, Resolver
from .session import HandshakeSession, SessionState

__version__ = '1.0.0'

__all__ = [
    'AddressSpec',
    'AddressType',
    'AuthError',
    'AuthMethod',
    'ChainConfig',
    'ChainConnector',
    'Command',
    'ConfigError',
    'ConnectError',
    'ConnectOptions',
    'ConnectReply',
    'ConnectReplyError',
    'ConnectionFactory',
    'Credentials',
    'HandshakeSession',
    'Phase',
    'ProtocolError',
    'ProxyEndpoint',
    'ReplyCode',
    'ResolutionError',
    'ResolutionPolicy',
    'Resolver',
    'SessionState',
    'Socks5Error',
    'TruncatedMessage',
    'TunnelHandle',
    'ValidationError',
    'connect',
    'connect_with_remote_dns',
    'load_chain_config',
    'make_connection_factory',
    'parse_proxy_url',
]
