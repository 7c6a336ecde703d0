"""
Network Interface Resolution

Design Decision: Interface Data Source
======================================

Options Considered:
1. netifaces - Cross-platform, returns addresses per family
2. psutil.net_if_addrs() - Heavier dependency, same data
3. ioctl(SIOCGIFADDR) - Linux only, IPv4 only

Decision: netifaces
- Small C extension, no background services
- Address families are kept apart (AF_INET vs AF_LINK)
- Addresses come back in the order the OS reports them

Resolution Rules:
- Unknown interface name is an error (no retry, it will not appear later)
- The first address that parses as IPv4 wins
- An interface with no IPv4 address is returned with ipv4_address=None,
  callers that need IPv4 must check for it
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import netifaces
from rich.console import Console
from rich.table import Table

from ..errors import InterfaceNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkInterface:
    """A host interface resolved for use by the relay."""
    name: str
    ipv4_address: Optional[ipaddress.IPv4Address] = None
    hardware_address: str = ''

    @property
    def ipv4_packed(self) -> Optional[bytes]:
        """The 4-byte form of the IPv4 address, if any."""
        if self.ipv4_address is None:
            return None
        return self.ipv4_address.packed


@dataclass
class InterfaceListing:
    """Everything the host reports about one interface."""
    index: int
    name: str
    hardware_address: str
    addresses: List[str] = field(default_factory=list)


def _hardware_address(addrs: dict) -> str:
    for link in addrs.get(netifaces.AF_LINK, []):
        mac = link.get('addr')
        if mac:
            return mac
    return ''


def _first_ipv4(addrs: dict) -> Optional[ipaddress.IPv4Address]:
    for entry in addrs.get(netifaces.AF_INET, []):
        try:
            return ipaddress.IPv4Address(entry.get('addr', ''))
        except ValueError:
            continue
    return None


def resolve_interface(name: str) -> NetworkInterface:
    """
    Resolve an interface name to its IPv4 and hardware address.

    Args:
        name: Interface name as known to the host (e.g. "eth0")

    Returns:
        NetworkInterface, with ipv4_address None if the interface
        has no IPv4 binding

    Raises:
        InterfaceNotFoundError: If the host has no interface by that name
    """
    try:
        addrs = netifaces.ifaddresses(name)
    except ValueError:
        raise InterfaceNotFoundError(name)

    ipv4 = _first_ipv4(addrs)
    if ipv4 is None:
        logger.debug(f"Interface {name} has no IPv4 address")

    return NetworkInterface(
        name=name,
        ipv4_address=ipv4,
        hardware_address=_hardware_address(addrs),
    )


def list_interfaces() -> List[InterfaceListing]:
    """Enumerate all host interfaces with every address they carry."""
    listings = []
    for index, name in enumerate(netifaces.interfaces(), start=1):
        addrs = netifaces.ifaddresses(name)
        addresses = []
        for family in (netifaces.AF_INET, netifaces.AF_INET6):
            for entry in addrs.get(family, []):
                addr = entry.get('addr')
                if not addr:
                    continue
                netmask = entry.get('netmask')
                addresses.append(f"{addr}/{netmask}" if netmask else addr)
        listings.append(InterfaceListing(
            index=index,
            name=name,
            hardware_address=_hardware_address(addrs),
            addresses=addresses,
        ))
    return listings


def render_interfaces(listings: List[InterfaceListing],
                      console: Optional[Console] = None,
                      title: str = "Network Interfaces"):
    """Print interfaces as a table."""
    console = console or Console()

    table = Table(title=title)
    table.add_column("Interface Id", justify="right")
    table.add_column("Interface Name", style="cyan")
    table.add_column("Hardware Address", style="yellow")
    table.add_column("IP Addresses", style="green")

    for listing in listings:
        table.add_row(
            str(listing.index),
            listing.name,
            listing.hardware_address or "-",
            " ".join(listing.addresses) or "-",
        )

    console.print(table)


def describe_interface(name: str) -> InterfaceListing:
    """
    Get the full listing for a single interface.

    Raises:
        InterfaceNotFoundError: If the host has no interface by that name
    """
    for listing in list_interfaces():
        if listing.name == name:
            return listing
    raise InterfaceNotFoundError(name)
