"""
Runtime Option Validation

Turns the raw string flags given on the command line into a RuntimeConfig.

The mode decides what else is required:

    info    interface only
    pcap    interface + an existing pcap file
    listen  interface only

Validation is all-or-nothing. Either a complete RuntimeConfig comes back
or a ConfigurationError (or the OSError from probing the pcap file) is
raised, and nothing built along the way is returned.

Client list parsing collects every bad entry before failing, so the
operator sees all typos at once instead of fixing them one run at a time.
"""

import ipaddress
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Mapping, Optional, Union

from ..config import ApiConnection
from ..errors import (
    InvalidClientAddressError,
    InvalidModeError,
    PcapFileNotFoundError,
)
from ..interfaces import NetworkInterface, resolve_interface

logger = logging.getLogger(__name__)

DEFAULT_BPF_FILTER = "udp and port 4992 and dst host 255.255.255.255"


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Any mapping of flag name -> string value (missing names read as "")
FlagSource = Mapping[str, Optional[str]]


class Mode(str, Enum):
    INFO = "info"
    PCAP = "pcap"
    LISTEN = "listen"


@dataclass(frozen=True)
class RuntimeConfig:
    """Validated configuration for one run of the relay."""
    mode: Mode
    network_interface: NetworkInterface
    pcap_file: Optional[str] = None
    broadcast_enabled: bool = False
    debug_enabled: bool = False
    client_addresses: List[IPAddress] = field(default_factory=list)
    packet_filter: str = DEFAULT_BPF_FILTER
    api_connection: ApiConnection = field(default_factory=ApiConnection)


def _flag(flags: FlagSource, name: str) -> str:
    value = flags.get(name)
    return '' if value is None else str(value)


def parse_bool_flag(value: Optional[str]) -> bool:
    """Only the literal "true" is true. Anything else, including garbage, is false."""
    return value == "true"


def parse_mode(mode: str) -> Mode:
    try:
        return Mode(mode)
    except ValueError:
        raise InvalidModeError(mode)


def check_pcap_file(path: str) -> str:
    """
    Make sure the pcap file exists.

    Raises:
        PcapFileNotFoundError: If nothing exists at path
        OSError: Any other failure to stat the path, unchanged
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        raise PcapFileNotFoundError(path)
    return path


def parse_client_addresses(value: str) -> List[IPAddress]:
    """
    Parse a comma-separated list of client IP addresses.

    Blank entries are ignored. All invalid entries are collected and
    reported together.

    Raises:
        InvalidClientAddressError: If any entry is not an IP address
    """
    addresses = []
    invalid = []

    for entry in value.split(','):
        entry = entry.strip()
        if not entry:
            continue
        try:
            addresses.append(ipaddress.ip_address(entry))
        except ValueError:
            invalid.append(entry)

    if invalid:
        raise InvalidClientAddressError(invalid)

    return addresses


def validate_config_options(
    mode: str,
    flags: FlagSource,
    api_connection: Optional[ApiConnection] = None,
    resolver: Optional[Callable[[str], NetworkInterface]] = None,
) -> RuntimeConfig:
    """
    Validate raw flags into a RuntimeConfig.

    Args:
        mode: One of "info", "pcap", "listen"
        flags: Flag name -> string value
        api_connection: OPNsense API credentials to carry along
        resolver: Interface resolver (defaults to resolve_interface)

    Returns:
        A fully populated RuntimeConfig

    Raises:
        InvalidModeError: Unknown mode, nothing else is checked
        PcapFileNotFoundError: pcap mode and the file does not exist
        OSError: pcap mode and the file could not be probed
        InterfaceNotFoundError: The interface flag names no interface
        InvalidClientAddressError: Broadcast enabled and bad client entries
    """
    resolver = resolver or resolve_interface

    parsed_mode = parse_mode(mode)

    pcap_file = None
    if parsed_mode is Mode.PCAP:
        pcap_file = check_pcap_file(_flag(flags, 'pcapfile'))

    broadcast_enabled = parse_bool_flag(_flag(flags, 'broadcast'))
    debug_enabled = parse_bool_flag(_flag(flags, 'debug'))

    # Needed in every mode, info mode prints it
    network_interface = resolver(_flag(flags, 'interface'))

    packet_filter = _flag(flags, 'filter') or DEFAULT_BPF_FILTER

    client_addresses = []
    if broadcast_enabled:
        client_addresses = parse_client_addresses(_flag(flags, 'clients'))

    config = RuntimeConfig(
        mode=parsed_mode,
        network_interface=network_interface,
        pcap_file=pcap_file,
        broadcast_enabled=broadcast_enabled,
        debug_enabled=debug_enabled,
        client_addresses=client_addresses,
        packet_filter=packet_filter,
        api_connection=api_connection or ApiConnection(),
    )

    logger.debug(f"Validated config: mode={config.mode.value} "
                 f"interface={network_interface.name} "
                 f"broadcast={broadcast_enabled} clients={len(client_addresses)}")

    return config
