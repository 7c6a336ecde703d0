"""
Discovery Packet Dispatch

Design Decision: Unicast Fan-out
================================

Options Considered:
1. Re-broadcast on the VPN interface
   - OpenVPN tun devices do not carry broadcast
2. One shared socket, sendto() per peer
   - Cannot pin a per-peer source through a connected socket
3. One connected socket per peer
   - Bound to the relay interface address, so replies route back
   - Connect errors surface per peer

Decision: One short-lived connected UDP socket per peer
- Peers are handled one after another, never more than one socket open
- Every socket is closed when its peer is done, whatever failed
- A failing peer is logged and skipped, the rest still get the packet
- Nothing is retried
- Socket calls block for up to the send timeout, so each peer is sent
  from a worker thread and the event loop keeps draining captured packets

Peer list:
- The peer directory is the only list read at dispatch time
- Static --clients addresses are stored in the directory at startup
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from ..errors import DirectoryError, PeerDispatchError
from ..options import RuntimeConfig

logger = logging.getLogger(__name__)

# Port radios and clients use for discovery packets
DISCOVERY_PORT = 4992

SocketAddress = Tuple[str, int]


class PeerSource(Protocol):
    """Anything that can list the peer addresses to send to."""

    def get_user_ip_addresses(self) -> Awaitable[List[str]]:
        ...


class DispatchOutcome(str, Enum):
    SENT = "sent"
    RESOLVE_LOCAL_ADDR_FAILED = "resolve_local_addr_failed"
    RESOLVE_PEER_ADDR_FAILED = "resolve_peer_addr_failed"
    DIAL_FAILED = "dial_failed"
    WRITE_FAILED = "write_failed"


@dataclass
class PeerResult:
    """Outcome of sending to one peer."""
    peer: str
    outcome: DispatchOutcome
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is DispatchOutcome.SENT


def resolve_udp_address(host: str, port: int) -> SocketAddress:
    """
    Resolve a numeric IPv4 host and port to a socket address.

    Raises:
        socket.gaierror: If host is not a numeric IPv4 address
    """
    infos = socket.getaddrinfo(
        host, port, socket.AF_INET, socket.SOCK_DGRAM, 0, socket.AI_NUMERICHOST
    )
    return infos[0][4]


class DiscoveryDispatcher:
    """
    Sends a serialized discovery packet to every peer in the directory.
    """

    def __init__(self, config: RuntimeConfig, directory: Optional[PeerSource],
                 port: int = DISCOVERY_PORT, timeout: Optional[float] = None,
                 socket_factory: Callable[..., socket.socket] = socket.socket):
        """
        Initialize the dispatcher.

        Args:
            config: Validated runtime config
            directory: Source of peer addresses, never read while
                broadcast is disabled
            port: Destination port on each peer
            timeout: Per-socket timeout for connect and send (None blocks)
            socket_factory: Creates sockets, replaceable for tests
        """
        self.config = config
        self.directory = directory
        self.port = port
        self.timeout = timeout
        self._socket_factory = socket_factory

    async def dispatch(self, payload: bytes) -> List[PeerResult]:
        """
        Send payload to every peer, one at a time.

        Returns:
            One PeerResult per peer, empty if broadcast is disabled or
            the directory could not be read
        """
        if not self.config.broadcast_enabled:
            logger.info("Send discovery packet disabled")
            return []

        try:
            peers = await self.directory.get_user_ip_addresses()
        except DirectoryError as e:
            logger.error(f"Error retrieving vpn client ips from peer directory: {e}")
            return []

        results = []
        for peer in peers:
            results.append(await asyncio.to_thread(self.send_to_peer, peer, payload))

        sent = sum(1 for r in results if r.ok)
        logger.info(f"Sent discovery packet to {sent}/{len(results)} peers")
        return results

    def send_to_peer(self, peer: str, payload: bytes) -> PeerResult:
        """Send payload to a single peer. Failures are logged and returned."""
        logger.debug(f"Sending discovery packet to {peer} "
                     f"on interface {self.config.network_interface.name}")
        try:
            remote = self._resolve_peer(peer)
            local = self._resolve_local(peer)
            self._send(peer, local, remote, payload)
        except PeerDispatchError as e:
            logger.warning(f"Skipping peer {peer}: {e}")
            return PeerResult(peer=peer, outcome=e.outcome, error=str(e))

        return PeerResult(peer=peer, outcome=DispatchOutcome.SENT)

    def _resolve_peer(self, peer: str) -> SocketAddress:
        try:
            return resolve_udp_address(peer, self.port)
        except (socket.gaierror, UnicodeError) as e:
            raise PeerDispatchError(peer, DispatchOutcome.RESOLVE_PEER_ADDR_FAILED, e)

    def _resolve_local(self, peer: str) -> SocketAddress:
        interface = self.config.network_interface
        if interface.ipv4_address is None:
            raise PeerDispatchError(
                peer, DispatchOutcome.RESOLVE_LOCAL_ADDR_FAILED,
                ValueError(f"interface {interface.name} has no IPv4 address"),
            )
        try:
            return resolve_udp_address(str(interface.ipv4_address), 0)
        except socket.gaierror as e:
            raise PeerDispatchError(peer, DispatchOutcome.RESOLVE_LOCAL_ADDR_FAILED, e)

    def _send(self, peer: str, local: SocketAddress, remote: SocketAddress,
              payload: bytes):
        try:
            sock = self._socket_factory(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise PeerDispatchError(peer, DispatchOutcome.DIAL_FAILED, e)

        with sock:
            try:
                sock.settimeout(self.timeout)
                sock.bind(local)
                sock.connect(remote)
            except OSError as e:
                raise PeerDispatchError(peer, DispatchOutcome.DIAL_FAILED, e)

            try:
                sent = sock.send(payload)
            except OSError as e:
                raise PeerDispatchError(peer, DispatchOutcome.WRITE_FAILED, e)

            if sent != len(payload):
                raise PeerDispatchError(
                    peer, DispatchOutcome.WRITE_FAILED,
                    OSError(f"short write: {sent} of {len(payload)} bytes"),
                )


async def maybe_send_discovery_packet(config: RuntimeConfig, payload: bytes,
                                      directory: PeerSource,
                                      timeout: Optional[float] = None) -> List[PeerResult]:
    """Send payload to every directory peer if broadcast is enabled."""
    dispatcher = DiscoveryDispatcher(config, directory, timeout=timeout)
    return await dispatcher.dispatch(payload)
