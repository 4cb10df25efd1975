"""
SOCKS5 链式代理 - 地址解析策略

本模块决定每次连接尝试中：
1. 最终目标主机名是在本地解析为 IP 字面量，还是以域名形式交给最后一跳代理解析
   （远程 DNS，类似 curl 的 socks5h:// 模式）
2. 代理自身的主机名是否在打开第一跳之前预先解析为 IP 字面量

所有解析都有超时上限。解析代理链是纯变换：返回新的元组，从不修改调用方的列表。
"""

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from .address import AddressSpec, ProxyEndpoint
from .errors import Phase, ResolutionError

logger = logging.getLogger('sockschain-resolution')

DEFAULT_RESOLVE_TIMEOUT = 30.0


class Resolver:
    """
    默认的主机名解析器

    使用事件循环的 getaddrinfo，在超时内返回去重后的 IP 字面量列表（保持原有顺序）。
    """

    async def resolve(self, hostname: str, timeout: Optional[float] = DEFAULT_RESOLVE_TIMEOUT) -> List[str]:
        """
        解析主机名

        Raises:
            ResolutionError: 解析失败、超时或没有结果
        """
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise ResolutionError(f"解析 {hostname} 超时（{timeout} 秒）",
                                  phase=Phase.RESOLUTION) from None
        except OSError as e:
            raise ResolutionError(f"解析 {hostname} 失败: {e}", phase=Phase.RESOLUTION) from e

        addresses = []
        for _family, _type, _proto, _canonname, sockaddr in infos:
            ip = str(ipaddress.ip_address(sockaddr[0].split('%', 1)[0]))
            if ip not in addresses:
                addresses.append(ip)

        if not addresses:
            raise ResolutionError(f"解析 {hostname} 没有返回任何地址", phase=Phase.RESOLUTION)
        return addresses


@dataclass(frozen=True)
class ResolutionPolicy:
    """
    地址解析策略

    Attributes:
        remote_target_resolution: 为 True 时目标主机名以域名形式发送给最后一跳代理解析
            （默认: False，本地解析）
        resolve_proxy_hostnames: 为 True 时代理主机名在使用前解析为 IP 字面量（默认: True）
        resolve_timeout: 单次解析的超时时间（秒，默认: 30）
        literal_fallback: 本地解析目标失败时，是否退回为直接发送主机名（默认: False，
            直接抛出 ResolutionError）
    """
    remote_target_resolution: bool = False
    resolve_proxy_hostnames: bool = True
    resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT
    literal_fallback: bool = False

    async def resolve_target(self, target: Union[str, AddressSpec], resolver: Resolver) -> AddressSpec:
        """
        确定最终目标的地址表示

        IP 字面量无论策略如何都编码为 IPv4/IPv6；只有策略明确要求远程解析时
        才使用域名编码。

        Raises:
            ResolutionError: 本地解析失败且未启用 literal_fallback
        """
        address = target if isinstance(target, AddressSpec) else AddressSpec.from_host(target)
        if address.is_ip or self.remote_target_resolution:
            return address

        try:
            addresses = await resolver.resolve(address.host, self.resolve_timeout)
        except ResolutionError as e:
            if not self.literal_fallback:
                raise e.locate(phase=Phase.RESOLUTION)
            logger.warning(f"目标 {address.host} 本地解析失败，按原样发送主机名: {e.message}")
            return address

        resolved = AddressSpec.from_host(addresses[0])
        logger.debug(f"目标 {address.host} 解析为 {resolved.host}")
        return resolved

    async def resolve_chain(self, chain: Sequence[ProxyEndpoint],
                            resolver: Resolver) -> Tuple[ProxyEndpoint, ...]:
        """
        解析代理链中的主机名

        已经是 IP 字面量的条目原样保留；解析失败的条目保留原主机名（非致命，
        之后打开传输时自然会失败）。

        Returns:
            Tuple[ProxyEndpoint, ...]: 新的代理链
        """
        if not self.resolve_proxy_hostnames:
            return tuple(chain)

        resolved = []
        for endpoint in chain:
            if endpoint.address.is_ip:
                resolved.append(endpoint)
                continue
            try:
                addresses = await resolver.resolve(endpoint.host, self.resolve_timeout)
            except ResolutionError as e:
                logger.warning(f"代理主机名 {endpoint.host} 解析失败，保留原主机名: {e.message}")
                resolved.append(endpoint)
                continue
            resolved.append(endpoint.with_address(AddressSpec.from_host(addresses[0])))
            logger.debug(f"代理 {endpoint.host} 解析为 {addresses[0]}")
        return tuple(resolved)
