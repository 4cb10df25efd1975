"""
HTTP 客户端集成

提供一个显式的连接工厂函数值，签名固定为:
    async (target_host, target_port, scheme) -> TunnelHandle

HTTP 客户端的集成层注入该函数即可通过代理链建立连接；本模块不依赖任何
HTTP 客户端类型。scheme 为 https 时在隧道建立后升级 TLS。
"""

import logging
import ssl
from typing import Awaitable, Callable, Optional, Sequence

from .address import ProxyEndpoint
from .chain import ChainConnector, Opener
from .config import ConnectOptions
from .errors import ConfigError
from .handle import TunnelHandle
from .resolution import Resolver

logger = logging.getLogger('sockschain-integration')

ConnectionFactory = Callable[[str, int, str], Awaitable[TunnelHandle]]

SECURE_SCHEMES = ('https', 'wss')


def make_connection_factory(chain: Sequence[ProxyEndpoint], options: Optional[ConnectOptions] = None,
                            ssl_context: Optional[ssl.SSLContext] = None, *,
                            opener: Optional[Opener] = None,
                            resolver: Optional[Resolver] = None) -> ConnectionFactory:
    """
    创建通过代理链连接的工厂函数

    代理链在创建时复制为元组，之后调用方修改自己的列表不会影响工厂。

    Args:
        chain: 有序的代理列表
        options: 连接选项
        ssl_context: TLS 上下文（默认 ssl.create_default_context()）
        opener: 传输打开协作者（测试注入）
        resolver: 主机名解析协作者（测试注入）

    Returns:
        ConnectionFactory: async (target_host, target_port, scheme) -> TunnelHandle
    """
    proxies = tuple(chain)
    if not proxies:
        raise ConfigError("代理链不能为空")
    connector = ChainConnector(options, opener, resolver)

    async def connection_factory(target_host: str, target_port: int, scheme: str = 'http') -> TunnelHandle:
        tunnel = await connector.connect(proxies, target_host, target_port)
        if scheme.lower() not in SECURE_SCHEMES:
            return tunnel

        try:
            await tunnel.start_tls(ssl_context or ssl.create_default_context(), server_hostname=target_host)
        except BaseException:
            await tunnel.close()
            raise
        return tunnel

    return connection_factory
