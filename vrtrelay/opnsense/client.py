"""
OPNsense API Client

Reads the OpenVPN route table from an OPNsense firewall so the peer
directory follows whoever is connected to the VPN.

Endpoint: GET <url>/api/openvpn/service/search_routes
Auth: HTTP basic, API key as username and API secret as password
"""

import asyncio
import base64
import ipaddress
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import ApiConnection
from ..errors import OpnsenseApiError
from ..storage import PeerDirectory, SOURCE_OPNSENSE

logger = logging.getLogger(__name__)

ROUTES_PATH = "/api/openvpn/service/search_routes"

# HTTP status codes worth another try
RETRY_STATUS = (429, 502, 503, 504)


# === Pydantic Models ===

class VpnRouteRow(BaseModel):
    """One connected OpenVPN client."""
    model_config = ConfigDict(populate_by_name=True)

    virtual_address: str = ""
    common_name: str = ""
    real_address: str = ""
    last_ref: str = ""
    last_ref_time: str = Field(default="", alias="last_ref__time_t_")
    type: str = ""
    id: str = ""
    description: str = ""


class VpnRoutes(BaseModel):
    """Route table page as returned by search_routes."""
    total: int = 0
    rowCount: int = 0
    current: int = 0
    rows: List[VpnRouteRow] = []


class OpnsenseClient:
    """Minimal client for the OPNsense OpenVPN API."""

    def __init__(self, connection: ApiConnection, timeout: float = 10.0,
                 retries: int = 2):
        if not connection.is_configured:
            raise OpnsenseApiError(
                "OPNsense API is not configured "
                "(set OPNSENSE_API_URL, OPNSENSE_API_KEY and OPNSENSE_API_SECRET)"
            )
        self.connection = connection
        self.timeout = timeout
        self.retries = retries

    @property
    def routes_url(self) -> str:
        return self.connection.url.rstrip('/') + ROUTES_PATH

    def _headers(self) -> dict:
        token = f"{self.connection.username}:{self.connection.password}"
        encoded = base64.b64encode(token.encode('utf-8')).decode('ascii')
        return {
            'Authorization': f"Basic {encoded}",
            'Accept': 'application/json',
        }

    def _get(self, url: str) -> bytes:
        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                request = Request(url, headers=self._headers())
                with urlopen(request, timeout=self.timeout) as response:
                    return response.read()
            except HTTPError as exc:
                last_error = exc
                if exc.code in RETRY_STATUS and attempt < self.retries:
                    time.sleep(1 + attempt)
                    continue
                raise OpnsenseApiError(f"OPNsense API returned HTTP {exc.code} for {url}") from exc
            except (URLError, TimeoutError) as exc:
                last_error = exc
                if attempt < self.retries:
                    time.sleep(1 + attempt)
                    continue
                raise OpnsenseApiError(f"cannot reach OPNsense API at {url}: {exc}") from exc

        raise OpnsenseApiError(f"cannot reach OPNsense API at {url}: {last_error}")

    def fetch_vpn_routes(self) -> VpnRoutes:
        """
        Fetch the current OpenVPN route table.

        Raises:
            OpnsenseApiError: If the API cannot be reached or the reply is not
                a route table
        """
        body = self._get(self.routes_url)
        try:
            return VpnRoutes.model_validate(json.loads(body))
        except (ValueError, ValidationError) as exc:
            raise OpnsenseApiError(f"unexpected reply from OPNsense API: {exc}") from exc


@dataclass
class SyncResult:
    """Summary of one route table sync."""
    stored: int = 0
    skipped: int = 0
    deleted: int = 0


def _route_address(row: VpnRouteRow) -> Optional[str]:
    """Virtual address of a route row as an IP string, None for tap/MAC routes."""
    try:
        return str(ipaddress.ip_address(row.virtual_address.strip()))
    except ValueError:
        return None


async def sync_vpn_users(client: OpnsenseClient, directory: PeerDirectory,
                         delete_missing: bool = False) -> SyncResult:
    """
    Store every connected VPN client in the peer directory.

    Args:
        client: OPNsense API client
        directory: Open peer directory
        delete_missing: Remove OPNsense users that are no longer connected

    Returns:
        SyncResult with counts
    """
    routes = await asyncio.to_thread(client.fetch_vpn_routes)
    result = SyncResult()
    seen = []

    for row in routes.rows:
        address = _route_address(row)
        if address is None or not row.common_name:
            logger.debug(f"Skipping route without usable address: {row.common_name!r} "
                         f"{row.virtual_address!r}")
            result.skipped += 1
            continue

        await directory.upsert_user(
            common_name=row.common_name,
            virtual_address=address,
            real_address=row.real_address,
            description=row.description,
            source=SOURCE_OPNSENSE,
        )
        seen.append(row.common_name)
        result.stored += 1

    if delete_missing:
        result.deleted = await directory.delete_users_except(seen, source=SOURCE_OPNSENSE)

    logger.info(f"VPN user sync: {result.stored} stored, {result.skipped} skipped, "
                f"{result.deleted} deleted")
    return result
