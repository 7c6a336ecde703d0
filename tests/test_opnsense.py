import base64
import json
from urllib.error import HTTPError, URLError

import pytest

from vrtrelay.config import ApiConnection
from vrtrelay.errors import OpnsenseApiError
from vrtrelay.opnsense import OpnsenseClient, VpnRoutes, sync_vpn_users
from vrtrelay.opnsense import client as client_module
from vrtrelay.storage import PeerDirectory

API = ApiConnection(username='apikey', password='apisecret', url='https://fw.example.lan/')

ROUTES = {
    "total": 3,
    "rowCount": 3,
    "current": 1,
    "rows": [
        {
            "virtual_address": "10.8.0.6",
            "common_name": "adam",
            "real_address": "203.0.113.7:51000",
            "last_ref": "Mon Oct 19 10:00:00 2026",
            "last_ref__time_t_": "1792404000",
            "type": "tun",
            "id": "server1",
            "description": "Road Warrior",
        },
        {
            "virtual_address": "10.8.0.10",
            "common_name": "mia",
            "real_address": "198.51.100.4:40211",
            "type": "tun",
            "id": "server1",
        },
        {
            "virtual_address": "c2:01:aa:bb:cc:dd",
            "common_name": "bridge",
            "type": "tap",
        },
    ],
}


class FakeResponse:
    def __init__(self, body: bytes):
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self):
        return self.body


class FakeUrlopen:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append((request, timeout))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return FakeResponse(reply)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(client_module.time, 'sleep', lambda seconds: None)


def test_routes_model_parses_alias():
    routes = VpnRoutes.model_validate(ROUTES)

    assert routes.total == 3
    assert routes.rowCount == 3
    assert routes.rows[0].last_ref_time == "1792404000"
    assert routes.rows[1].description == ""


def test_client_requires_configuration():
    with pytest.raises(OpnsenseApiError):
        OpnsenseClient(ApiConnection(url='https://fw.example.lan'))


def test_fetch_vpn_routes(monkeypatch):
    fake = FakeUrlopen(json.dumps(ROUTES).encode())
    monkeypatch.setattr(client_module, 'urlopen', fake)

    routes = OpnsenseClient(API, timeout=3.0).fetch_vpn_routes()

    assert [r.common_name for r in routes.rows] == ['adam', 'mia', 'bridge']
    request, timeout = fake.requests[0]
    assert request.full_url == 'https://fw.example.lan/api/openvpn/service/search_routes'
    assert timeout == 3.0
    expected = base64.b64encode(b'apikey:apisecret').decode()
    assert request.get_header('Authorization') == f'Basic {expected}'


def test_fetch_retries_transient_errors(monkeypatch):
    unavailable = HTTPError(API.url, 503, 'Service Unavailable', {}, None)
    fake = FakeUrlopen(unavailable, URLError('timed out'), json.dumps(ROUTES).encode())
    monkeypatch.setattr(client_module, 'urlopen', fake)

    routes = OpnsenseClient(API, retries=2).fetch_vpn_routes()

    assert len(routes.rows) == 3
    assert len(fake.requests) == 3


def test_fetch_does_not_retry_auth_errors(monkeypatch):
    fake = FakeUrlopen(HTTPError(API.url, 401, 'Unauthorized', {}, None))
    monkeypatch.setattr(client_module, 'urlopen', fake)

    with pytest.raises(OpnsenseApiError, match='HTTP 401'):
        OpnsenseClient(API).fetch_vpn_routes()
    assert len(fake.requests) == 1


def test_fetch_gives_up_after_retries(monkeypatch):
    fake = FakeUrlopen(URLError('refused'), URLError('refused'))
    monkeypatch.setattr(client_module, 'urlopen', fake)

    with pytest.raises(OpnsenseApiError, match='cannot reach'):
        OpnsenseClient(API, retries=1).fetch_vpn_routes()


@pytest.mark.parametrize('body', [b'<html>login</html>', b'[1, 2, 3]'])
def test_fetch_rejects_unexpected_reply(monkeypatch, body):
    monkeypatch.setattr(client_module, 'urlopen', FakeUrlopen(body))

    with pytest.raises(OpnsenseApiError, match='unexpected reply'):
        OpnsenseClient(API).fetch_vpn_routes()


class FakeClient:
    def __init__(self, routes):
        self.routes = VpnRoutes.model_validate(routes)

    def fetch_vpn_routes(self):
        return self.routes


async def test_sync_stores_connected_users(tmp_path):
    async with PeerDirectory(tmp_path / 'vrtrelay.db') as directory:
        result = await sync_vpn_users(FakeClient(ROUTES), directory)

        assert (result.stored, result.skipped, result.deleted) == (2, 1, 0)
        users = await directory.get_users()

    assert [u['common_name'] for u in users] == ['adam', 'mia']
    assert users[0]['real_address'] == '203.0.113.7:51000'
    assert users[0]['description'] == 'Road Warrior'


async def test_sync_deletes_disconnected_users(tmp_path):
    async with PeerDirectory(tmp_path / 'vrtrelay.db') as directory:
        await directory.upsert_user('gone', '10.8.0.99')
        await directory.add_static_clients(['10.8.0.50'])

        kept = await sync_vpn_users(FakeClient(ROUTES), directory)
        assert kept.deleted == 0
        assert '10.8.0.99' in await directory.get_user_ip_addresses()

        result = await sync_vpn_users(FakeClient(ROUTES), directory, delete_missing=True)
        addresses = await directory.get_user_ip_addresses()

    assert result.deleted == 1
    assert addresses == ['10.8.0.6', '10.8.0.10', '10.8.0.50']
