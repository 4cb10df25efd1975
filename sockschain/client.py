"""
SOCKS5 链式代理 - 命令行客户端

版本: 1.0.0

通过一条或多条 SOCKS5 代理发起一次 HTTP GET 请求，并把响应原样输出到标准输出。

使用示例:
    sockschain --proxy socks5://127.0.0.1:1080 http://example.com/
    sockschain -c config.yaml --remote-dns https://example.com/
"""

import argparse
import asyncio
import sys
from typing import List, Optional
from urllib.parse import quote, urlsplit

from .config import ChainConfig, ConnectOptions, load_config, parse_proxy_entry
from .errors import Socks5Error
from .integration import make_connection_factory
from .logger import LoggerManager, get_logger
from .resolution import ResolutionPolicy

logger = get_logger('sockschain-client')

DEFAULT_PORTS = {'http': 80, 'https': 443}


def host_header(hostname: str, port: int = None) -> str:
    """
    构造 Host 头的值

    国际化域名转换为 IDNA 形式，IPv6 字面量加方括号，非默认端口附加在后面。

    Raises:
        ValueError: 主机名无法进行 IDNA 编码
    """
    if ':' in hostname:
        host = f"[{hostname}]"
    else:
        try:
            host = hostname.encode('idna').decode('ascii')
        except UnicodeError as e:
            raise ValueError(f"无效的主机名 {hostname!r}: {e}") from e
    if port is not None:
        host = f"{host}:{port}"
    return host


def build_request(host: str, path: str) -> bytes:
    """
    构造一个 Connection: close 的 HTTP/1.1 GET 请求

    路径中的非 ASCII 字符按 UTF-8 百分号编码，已有的转义保持不变。
    """
    path = quote(path, safe="/?=&%")
    return (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {host}\r\n"
        f"User-Agent: sockschain/1.0\r\n"
        f"Accept: */*\r\n"
        f"Connection: close\r\n"
        f"\r\n"
    ).encode('ascii')


async def fetch(config: ChainConfig, url: str, out=None, factory=None) -> int:
    """
    通过代理链获取 URL，把响应写入 out

    Args:
        config: 代理链配置
        url: 要获取的 URL
        out: 二进制输出流（默认标准输出）
        factory: 连接工厂（默认按 config 创建）

    Returns:
        int: 收到的字节数
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parts.hostname:
        raise ValueError(f"不支持的 URL: {url}")

    port = parts.port or DEFAULT_PORTS[scheme]
    path = parts.path or '/'
    if parts.query:
        path = f"{path}?{parts.query}"
    header = host_header(parts.hostname, parts.port)

    out = out or sys.stdout.buffer
    factory = factory or make_connection_factory(config.proxies, config.options)
    received = 0

    async with await factory(parts.hostname, port, scheme) as tunnel:
        await tunnel.write(build_request(header, path))
        while True:
            data = await tunnel.read(65536)
            if not data:
                break
            received += len(data)
            out.write(data)
    out.flush()

    logger.info(f"收到 {received} 字节")
    return received


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='SOCKS5 链式代理客户端')
    parser.add_argument('url', help='要获取的 http(s) URL')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--proxy', '-x', action='append', default=[],
                        help='代理 URL (socks5://[user:pass@]host:port)，可重复，按顺序组成代理链')
    parser.add_argument('--remote-dns', action='store_true', help='由最后一跳代理解析目标主机名')
    parser.add_argument('--no-resolve-proxies', action='store_true', help='不在本地预解析代理主机名')
    parser.add_argument('--timeout', '-t', type=float, default=None, help='连接和解析超时（秒）')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, config_data: dict) -> ChainConfig:
    """
    合并配置文件和命令行参数 - 命令行参数优先

    --proxy 给出时完全替换配置文件中的代理链。
    """
    config = ChainConfig.from_dict(config_data)
    if args.proxy:
        config.proxies = [parse_proxy_entry(url) for url in args.proxy]

    options = config.options
    resolution = options.resolution
    config.options = ConnectOptions(
        resolution=ResolutionPolicy(
            remote_target_resolution=resolution.remote_target_resolution or args.remote_dns,
            resolve_proxy_hostnames=resolution.resolve_proxy_hostnames and not args.no_resolve_proxies,
            resolve_timeout=args.timeout if args.timeout is not None else resolution.resolve_timeout,
            literal_fallback=resolution.literal_fallback,
        ),
        connect_timeout=args.timeout if args.timeout is not None else options.connect_timeout,
        io_timeout=options.io_timeout,
    )
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """
    主函数 - 解析命令行参数并发起请求

    Returns:
        int: 0 成功，1 连接或协议错误，2 用法错误
    """
    args = parse_args(argv)
    config_data = load_config(args.config)
    if not isinstance(config_data, dict):
        config_data = {}

    manager = LoggerManager()
    manager.initialize(log_config=config_data.get('logging'))
    if args.debug:
        manager.set_level('DEBUG')

    try:
        config = build_config(args, config_data)
    except Socks5Error as e:
        logger.error(f"配置无效: {e}")
        return 2

    if not config.proxies:
        logger.error("未配置代理! 使用 --proxy 或在配置文件中设置 proxies")
        return 2

    try:
        asyncio.run(fetch(config, args.url))
    except ValueError as e:
        logger.error(str(e))
        return 2
    except Socks5Error as e:
        logger.error(f"连接失败: {e}")
        return 1
    except OSError as e:
        logger.error(f"网络错误: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())
