"""
OPNsense Module - VPN Route Sync

Fills the peer directory from the OPNsense OpenVPN route table.
"""

from .client import OpnsenseClient, SyncResult, VpnRouteRow, VpnRoutes, sync_vpn_users

__all__ = ['OpnsenseClient', 'SyncResult', 'VpnRouteRow', 'VpnRoutes', 'sync_vpn_users']
