import ipaddress
from typing import Dict, List

import pytest

from vrtrelay.errors import DirectoryError
from vrtrelay.interfaces import NetworkInterface, resolver
from vrtrelay.options import Mode, RuntimeConfig


class FakeNetifaces:
    """Stands in for the netifaces module with a fixed interface table."""

    AF_INET = 2
    AF_INET6 = 10
    AF_LINK = 17

    def __init__(self, table: Dict[str, dict]):
        self.table = table

    def interfaces(self) -> List[str]:
        return list(self.table)

    def ifaddresses(self, name: str) -> dict:
        if name not in self.table:
            raise ValueError("You must specify a valid interface name.")
        return self.table[name]


INTERFACE_TABLE = {
    'lo': {
        FakeNetifaces.AF_LINK: [{'addr': '00:00:00:00:00:00'}],
        FakeNetifaces.AF_INET: [{'addr': '127.0.0.1', 'netmask': '255.0.0.0'}],
    },
    'eth0': {
        FakeNetifaces.AF_LINK: [{'addr': '00:11:22:33:44:55'}],
        FakeNetifaces.AF_INET: [
            {'addr': '192.168.1.10', 'netmask': '255.255.255.0'},
            {'addr': '192.168.1.11'},
        ],
        FakeNetifaces.AF_INET6: [{'addr': 'fe80::1', 'netmask': 'ffff:ffff:ffff:ffff::/64'}],
    },
    'tun0': {
        FakeNetifaces.AF_INET6: [{'addr': 'fd00::5'}],
    },
    'odd0': {
        FakeNetifaces.AF_INET: [{'addr': 'not-an-ip'}, {'addr': '10.0.0.1'}],
    },
}


@pytest.fixture
def fake_netifaces(monkeypatch):
    fake = FakeNetifaces(INTERFACE_TABLE)
    monkeypatch.setattr(resolver, 'netifaces', fake)
    return fake


class FakeDirectory:
    """Peer source returning a fixed list and counting lookups."""

    def __init__(self, peers=None, error: Exception = None):
        self.peers = list(peers or [])
        self.error = error
        self.calls = 0

    async def get_user_ip_addresses(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.peers)


@pytest.fixture
def eth0():
    return NetworkInterface(
        name='eth0',
        ipv4_address=ipaddress.IPv4Address('192.168.1.10'),
        hardware_address='00:11:22:33:44:55',
    )


@pytest.fixture
def broadcast_config(eth0):
    return RuntimeConfig(
        mode=Mode.LISTEN,
        network_interface=eth0,
        broadcast_enabled=True,
    )


@pytest.fixture
def failing_directory():
    return FakeDirectory(error=DirectoryError("database is locked"))
