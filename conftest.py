"""pytest 公共夹具"""

import pytest

from fake_proxy import FakeNetwork, FakeResolver
from sockschain.address import ProxyEndpoint


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({
        'proxy1.example': ['10.0.0.1'],
        'proxy2.example': ['10.0.0.2'],
        'example.com': ['93.184.216.34', '2606:2800:220:1::1'],
    })


@pytest.fixture
def two_hop_chain():
    """第一跳是 IP 字面量，第二跳是需要解析的主机名"""
    return [
        ProxyEndpoint.from_host('10.0.0.1', 1080),
        ProxyEndpoint.from_host('proxy2.example', 1080),
    ]
