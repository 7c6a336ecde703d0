"""
VRT Discovery Relay

Forwards radio discovery packets seen on a LAN to VPN clients
listed in a peer directory.
"""

__version__ = "0.1.0"
