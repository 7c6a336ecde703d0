"""
Discovery Module - Discovery Packet Relay

Captures discovery packets and sends them on to every known peer:
- Capture - pcap replay or live sniffing
- Dispatcher - unicast fan-out over UDP
"""

from .dispatcher import (
    DISCOVERY_PORT,
    DiscoveryDispatcher,
    DispatchOutcome,
    PeerResult,
    maybe_send_discovery_packet,
)
from .capture import PacketListener, extract_payload, format_payload, iter_pcap_payloads

__all__ = [
    'DISCOVERY_PORT',
    'DiscoveryDispatcher',
    'DispatchOutcome',
    'PeerResult',
    'maybe_send_discovery_packet',
    'PacketListener',
    'extract_payload',
    'format_payload',
    'iter_pcap_payloads',
]
