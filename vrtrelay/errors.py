"""
Error Types

Every failure the relay reports is one of these. Configuration errors stop
startup, directory errors stop a single dispatch, and peer errors only skip
the peer they belong to.
"""

from typing import List, Optional


class RelayError(Exception):
    """Base class for all relay errors."""


# === Configuration ===

class ConfigurationError(RelayError):
    """Raised when operator flags cannot be turned into a runtime config."""


class InvalidModeError(ConfigurationError):
    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f'the requested mode "{mode}" is not a valid mode')


class PcapFileNotFoundError(ConfigurationError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f'the requested pcapfile "{path}" does not exist')


class InterfaceNotFoundError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'network interface "{name}" not found')


class InvalidClientAddressError(ConfigurationError):
    """One or more entries of the clients list are not IP addresses."""

    def __init__(self, entries: List[str]):
        self.entries = list(entries)
        joined = ', '.join(f'"{e}"' for e in self.entries)
        super().__init__(f"invalid client address(es): {joined}")


# === Peer directory ===

class DirectoryError(RelayError):
    """Raised when the peer directory cannot be opened or queried."""


# === Dispatch ===

class PeerDispatchError(RelayError):
    """A single peer could not be sent to. The batch carries on."""

    def __init__(self, peer: str, outcome, cause: Optional[BaseException] = None):
        self.peer = peer
        self.outcome = outcome
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{outcome.value} for peer {peer}{detail}")


# === OPNsense ===

class OpnsenseApiError(RelayError):
    """Raised when the OPNsense API cannot be reached or returns bad data."""
