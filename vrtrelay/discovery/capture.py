"""
Discovery Packet Capture

Design Decision: Capture Library
================================

Options Considered:
1. Raw socket bound to port 4992
   - Competes with local software for the port
   - Only sees packets addressed to this host
2. scapy sniff / AsyncSniffer
   - Reads pcap files and live interfaces through one API
   - Takes BPF filter expressions directly
3. pyshark
   - Needs a tshark install

Decision: scapy
- Same code path for pcap replay and live capture
- BPF filter from the runtime config is applied by libpcap

The UDP payload is forwarded as-is. It is already a serialized
discovery packet, so nothing here looks inside it.
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Iterator, Optional, Union

from scapy.all import AsyncSniffer, IP, UDP, sniff
from scapy.utils import hexdump

logger = logging.getLogger(__name__)

# Captured payloads waiting for dispatch
MAX_QUEUED_PAYLOADS = 64


def extract_payload(packet) -> Optional[bytes]:
    """Get the UDP payload of an IPv4 packet, or None if there is none."""
    if IP not in packet or UDP not in packet:
        return None
    data = bytes(packet[UDP].payload)
    return data or None


def format_payload(payload: bytes) -> str:
    """Hexdump of a payload for debug output."""
    return hexdump(payload, dump=True)


def iter_pcap_payloads(path: Union[str, Path], bpf_filter: str) -> Iterator[bytes]:
    """
    Read discovery payloads from a pcap file.

    Args:
        path: pcap file to replay
        bpf_filter: BPF expression selecting discovery packets

    Yields:
        UDP payload of every matching packet, in file order
    """
    packets = sniff(offline=str(path), filter=bpf_filter, store=True)
    logger.info(f"Read {len(packets)} matching packets from {path}")

    for packet in packets:
        payload = extract_payload(packet)
        if payload is None:
            continue
        yield payload


class PacketListener:
    """
    Live capture of discovery payloads on one interface.

    scapy sniffs in its own thread; payloads are handed to the event loop
    through a bounded queue. When the queue is full the newest packet is
    dropped, the radio will announce again shortly.

    Usage:
        listener = PacketListener("eth0", bpf_filter)
        listener.start()
        async for payload in listener:
            ...
    """

    def __init__(self, interface: str, bpf_filter: str,
                 max_queued: int = MAX_QUEUED_PAYLOADS):
        self.interface = interface
        self.bpf_filter = bpf_filter

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queued)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sniffer: Optional[AsyncSniffer] = None
        self._dropped = 0

    @property
    def is_running(self) -> bool:
        return self._sniffer is not None and self._sniffer.running

    @property
    def dropped(self) -> int:
        return self._dropped

    def start(self):
        """Start sniffing. Must be called from the event loop thread."""
        if self.is_running:
            return

        self._loop = asyncio.get_running_loop()
        self._sniffer = AsyncSniffer(
            iface=self.interface,
            filter=self.bpf_filter,
            prn=self._on_packet,
            store=False,
        )
        self._sniffer.start()
        logger.info(f"Listening for discovery packets on {self.interface} "
                    f"(filter: {self.bpf_filter})")

    def stop(self):
        """Stop sniffing."""
        if self._sniffer is None:
            return
        if self._sniffer.running:
            self._sniffer.stop()
        self._sniffer = None
        logger.info(f"Stopped listening on {self.interface}")

    def _on_packet(self, packet):
        """Called in the sniffer thread for every captured packet."""
        payload = extract_payload(packet)
        if payload is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._enqueue, payload)

    def _enqueue(self, payload: bytes):
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(f"Dispatch is falling behind, dropped packet ({self._dropped} total)")

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            yield await self._queue.get()
