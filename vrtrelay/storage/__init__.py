"""
Storage Module - Peer Directory

Uses SQLite for storing the peers that receive discovery packets.
"""

from .database import PeerDirectory, SOURCE_OPNSENSE, SOURCE_STATIC

__all__ = ['PeerDirectory', 'SOURCE_OPNSENSE', 'SOURCE_STATIC']
