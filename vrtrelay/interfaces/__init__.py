"""
Interfaces Module - Host Network Interfaces

Resolves the interface the relay sends from and lists host interfaces.
"""

from .resolver import (
    NetworkInterface,
    InterfaceListing,
    resolve_interface,
    list_interfaces,
    describe_interface,
    render_interfaces,
)

__all__ = [
    'NetworkInterface',
    'InterfaceListing',
    'resolve_interface',
    'list_interfaces',
    'describe_interface',
    'render_interfaces',
]
