"""链式连接测试"""

import asyncio

import pytest

from fake_proxy import FakeProxy
from sockschain.address import AddressSpec, ProxyEndpoint
from sockschain.chain import ChainConnector, connect, connect_with_remote_dns
from sockschain.config import ConnectOptions
from sockschain.errors import (
    ConfigError, ConnectError, ConnectReplyError, Phase, ProtocolError, ResolutionError, ValidationError,
)
from sockschain.protocol import AuthMethod, Command, ReplyCode
from sockschain.resolution import ResolutionPolicy


def add_two_proxies(network, **second):
    p1 = network.add('10.0.0.1', 1080, FakeProxy('p1'))
    p2 = network.add('10.0.0.2', 1080, FakeProxy('p2', **second))
    return p1, p2


# ============================================================================
# 成功路径
# ============================================================================

def test_single_hop(network, resolver):
    proxy = network.add('10.0.0.1', 1080, FakeProxy('p1'))
    chain = [ProxyEndpoint.from_host('10.0.0.1', 1080)]

    async def scenario():
        return await connect(chain, '198.51.100.7', 8080, opener=network.open, resolver=resolver)

    tunnel = asyncio.run(scenario())
    assert network.opened == [('10.0.0.1', 1080)]
    assert proxy.requests == [(Command.CONNECT, AddressSpec.ipv4('198.51.100.7'), 8080)]
    assert resolver.calls == []
    assert tunnel.bound_port == 4242
    assert not tunnel.closed


def test_two_hops_local_resolution(network, resolver, two_hop_chain):
    p1, p2 = add_two_proxies(network)

    async def scenario():
        return await connect(two_hop_chain, 'example.com', 80, opener=network.open, resolver=resolver)

    tunnel = asyncio.run(scenario())
    # 只打开一条物理连接，第二跳经由第一跳到达
    assert network.opened == [('10.0.0.1', 1080)]
    assert p1.requests == [(Command.CONNECT, AddressSpec.ipv4('10.0.0.2'), 1080)]
    assert p2.requests == [(Command.CONNECT, AddressSpec.ipv4('93.184.216.34'), 80)]
    assert tunnel.target == AddressSpec.ipv4('93.184.216.34')
    assert [endpoint.host for endpoint in tunnel.chain] == ['10.0.0.1', '10.0.0.2']


def test_two_hops_remote_resolution(network, resolver, two_hop_chain):
    p1, p2 = add_two_proxies(network)

    async def scenario():
        return await connect_with_remote_dns(two_hop_chain, 'example.com', 80,
                                             opener=network.open, resolver=resolver)

    asyncio.run(scenario())
    assert p2.requests == [(Command.CONNECT, AddressSpec.domain('example.com'), 80)]
    assert resolver.calls == ['proxy2.example']


def test_remote_resolution_keeps_ip_literal(network, resolver):
    proxy = network.add('10.0.0.1', 1080, FakeProxy('p1'))
    options = ConnectOptions().with_remote_dns()

    async def scenario():
        await connect([ProxyEndpoint.from_host('10.0.0.1')], '2001:db8::80', 443, options,
                      opener=network.open, resolver=resolver)

    asyncio.run(scenario())
    assert proxy.requests == [(Command.CONNECT, AddressSpec.ipv6('2001:db8::80'), 443)]


def test_proxy_hostnames_sent_unresolved(network, resolver, two_hop_chain):
    network.add('10.0.0.1', 1080, FakeProxy('p1'))
    p2 = network.add('proxy2.example', 1080, FakeProxy('p2'))
    options = ConnectOptions(resolution=ResolutionPolicy(resolve_proxy_hostnames=False))

    async def scenario():
        await connect(two_hop_chain, '192.0.2.1', 80, options, opener=network.open, resolver=resolver)

    asyncio.run(scenario())
    assert network.proxies[('10.0.0.1', 1080)].requests == [
        (Command.CONNECT, AddressSpec.domain('proxy2.example'), 1080)
    ]
    assert p2.requests == [(Command.CONNECT, AddressSpec.ipv4('192.0.2.1'), 80)]
    assert resolver.calls == []


def test_per_hop_credentials(network, resolver):
    p1, p2 = add_two_proxies(network, method=AuthMethod.USERNAME_PASSWORD, credentials=('user', 'secret'))
    chain = [
        ProxyEndpoint.from_host('10.0.0.1', 1080),
        ProxyEndpoint.from_host('10.0.0.2', 1080, 'user', 'secret'),
    ]

    async def scenario():
        await connect(chain, '192.0.2.1', 22, opener=network.open, resolver=resolver)

    asyncio.run(scenario())
    assert p1.greetings == [(0x00,)]
    assert p1.auth_attempts == []
    assert p2.greetings == [(0x00, 0x02)]
    assert p2.auth_attempts == [('user', 'secret')]


def test_caller_chain_not_modified(network, resolver, two_hop_chain):
    add_two_proxies(network)
    original = list(two_hop_chain)

    async def scenario():
        return await connect(two_hop_chain, 'example.com', 80, opener=network.open, resolver=resolver)

    tunnel = asyncio.run(scenario())
    assert two_hop_chain == original
    assert two_hop_chain[1].host == 'proxy2.example'
    assert tunnel.chain[1].host == '10.0.0.2'


def test_tunnel_carries_application_bytes(network, resolver):
    network.add('10.0.0.1', 1080, FakeProxy('p1'))
    network.servers[('192.0.2.80', 80)] = lambda data: b'HTTP/1.0 200 OK\r\n\r\n' + data

    async def scenario():
        async with await connect([ProxyEndpoint.from_host('10.0.0.1')], '192.0.2.80', 80,
                                 opener=network.open, resolver=resolver) as tunnel:
            await tunnel.write(b'ping')
            body = await tunnel.read()
            eof = await tunnel.read()
        return tunnel, body, eof

    tunnel, body, eof = asyncio.run(scenario())
    assert body == b'HTTP/1.0 200 OK\r\n\r\nping'
    assert eof == b''
    assert tunnel.closed
    assert network.transports[0].closed


def test_concurrent_attempts_share_connector(network, resolver):
    network.add('10.0.0.1', 1080, FakeProxy('p1'))
    connector = ChainConnector(opener=network.open, resolver=resolver)
    chain = (ProxyEndpoint.from_host('10.0.0.1'),)

    async def scenario():
        return await asyncio.gather(
            connector.connect(chain, '192.0.2.1', 80),
            connector.connect(chain, '192.0.2.2', 80),
            connector.connect(chain, 'example.com', 443),
        )

    tunnels = asyncio.run(scenario())
    assert len(network.transports) == 3
    assert len({id(tunnel.transport) for tunnel in tunnels}) == 3
    assert [str(tunnel.target) for tunnel in tunnels] == ['192.0.2.1', '192.0.2.2', '93.184.216.34']


# ============================================================================
# 失败路径
# ============================================================================

def test_empty_chain(network, resolver):
    with pytest.raises(ConfigError):
        asyncio.run(connect([], 'example.com', 80, opener=network.open, resolver=resolver))
    assert network.opened == []


def test_invalid_target_port(network, resolver):
    with pytest.raises(ValidationError):
        asyncio.run(connect([ProxyEndpoint.from_host('10.0.0.1')], 'example.com', 70000,
                            opener=network.open, resolver=resolver))
    assert network.opened == []


def test_first_hop_refused(network, resolver):
    with pytest.raises(ConnectError) as info:
        asyncio.run(connect([ProxyEndpoint.from_host('10.0.0.1')], '192.0.2.1', 80,
                            opener=network.open, resolver=resolver))
    assert info.value.hop == 0
    assert info.value.phase == Phase.CONNECT
    assert isinstance(info.value.__cause__, ConnectionRefusedError)


def test_first_hop_timeout(resolver):
    async def hanging_opener(host, port):
        await asyncio.sleep(10)

    options = ConnectOptions(connect_timeout=0.05)
    with pytest.raises(ConnectError) as info:
        asyncio.run(connect([ProxyEndpoint.from_host('10.0.0.1')], '192.0.2.1', 80, options,
                            opener=hanging_opener, resolver=resolver))
    assert info.value.phase == Phase.CONNECT


def test_no_acceptable_method_at_first_hop(network, resolver, two_hop_chain):
    network.add('10.0.0.1', 1080, FakeProxy('p1', method=AuthMethod.NO_ACCEPTABLE))
    p2 = network.add('10.0.0.2', 1080, FakeProxy('p2'))

    with pytest.raises(ProtocolError) as info:
        asyncio.run(connect(two_hop_chain, '192.0.2.1', 80, opener=network.open, resolver=resolver))
    assert info.value.hop == 0
    assert info.value.phase == Phase.NEGOTIATE
    assert network.transports[0].closed
    assert network.opened == [('10.0.0.1', 1080)]
    assert p2.greetings == []


def test_second_hop_unreachable(network, resolver, two_hop_chain):
    p1, p2 = add_two_proxies(network, reply_code=ReplyCode.HOST_UNREACHABLE)

    with pytest.raises(ConnectReplyError) as info:
        asyncio.run(connect(two_hop_chain, 'example.com', 80, opener=network.open, resolver=resolver))
    assert info.value.code == ReplyCode.HOST_UNREACHABLE
    assert info.value.hop == 1
    assert info.value.phase == Phase.REQUEST
    assert len(network.transports) == 1
    assert network.transports[0].closed


def test_target_resolution_failure_opens_nothing(network, resolver, two_hop_chain):
    add_two_proxies(network)

    with pytest.raises(ResolutionError) as info:
        asyncio.run(connect(two_hop_chain, 'unknown.invalid', 80, opener=network.open, resolver=resolver))
    assert info.value.phase == Phase.RESOLUTION
    assert info.value.hop is None
    assert network.opened == []


def test_target_literal_fallback(network, resolver):
    proxy = network.add('10.0.0.1', 1080, FakeProxy('p1'))
    options = ConnectOptions(resolution=ResolutionPolicy(literal_fallback=True))

    async def scenario():
        await connect([ProxyEndpoint.from_host('10.0.0.1')], 'unknown.invalid', 80, options,
                      opener=network.open, resolver=resolver)

    asyncio.run(scenario())
    assert proxy.requests == [(Command.CONNECT, AddressSpec.domain('unknown.invalid'), 80)]


def test_cancellation_closes_transport(network, resolver, two_hop_chain):
    p1, p2 = add_two_proxies(network)
    p1.stall = True

    async def scenario():
        connector = ChainConnector(opener=network.open, resolver=resolver)
        task = asyncio.create_task(connector.connect(two_hop_chain, '192.0.2.1', 80))
        await p1.greeted.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert len(network.transports) == 1
    assert network.transports[0].closed
    assert p2.greetings == []
