"""
SQLite Peer Directory

Design Decision: Why SQLite?
============================

Options Considered:
1. SQLite - Embedded, no server, survives restarts
2. In-memory list - Lost on restart, cannot be shared with a sync job
3. Query OPNsense on every packet - Slow, API outage stops the relay

Decision: SQLite with aiosqlite
- The route sync job and the relay can run as separate processes
- Dispatch keeps working from the last synced table if the API is down
- Async support via aiosqlite

The directory is constructed and opened explicitly by the caller and
passed to whoever needs it. There is no module level handle.

Tables:
- vpn_users: VPN users whose virtual address receives discovery packets
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional, List, Dict, Iterable

import aiosqlite

from ..errors import DirectoryError

logger = logging.getLogger(__name__)

# Where a user row came from
SOURCE_OPNSENSE = 'opnsense'
SOURCE_STATIC = 'static'


class PeerDirectory:
    """
    SQLite-backed directory of peers that receive discovery packets.

    Usage:
        async with PeerDirectory(path) as directory:
            peers = await directory.get_user_ip_addresses()
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    async def open(self):
        """
        Open database connection.

        Raises:
            DirectoryError: If the database cannot be opened or initialized
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._init_schema()
        except (OSError, sqlite3.Error) as e:
            await self.close()
            raise DirectoryError(f"cannot open peer directory {self.db_path}: {e}") from e

        logger.info(f"Peer directory opened: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> 'PeerDirectory':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DirectoryError("peer directory is not open")
        return self._connection

    async def _init_schema(self):
        """Initialize database schema."""
        await self._connection.executescript("""
            -- Peers that receive discovery packets
            CREATE TABLE IF NOT EXISTS vpn_users (
                common_name TEXT PRIMARY KEY,
                virtual_address TEXT NOT NULL,
                real_address TEXT,
                description TEXT,
                source TEXT NOT NULL DEFAULT 'opnsense',
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_vpn_users_source ON vpn_users(source);
        """)
        await self._connection.commit()

    # === Peers ===

    async def get_user_ip_addresses(self) -> List[str]:
        """
        Get the virtual address of every user, ordered by common name.

        Raises:
            DirectoryError: If the directory is closed or the query fails
        """
        conn = self._require_connection()
        try:
            async with conn.execute(
                "SELECT virtual_address FROM vpn_users ORDER BY common_name"
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DirectoryError(f"cannot read user ip addresses: {e}") from e
        return [row['virtual_address'] for row in rows]

    async def get_users(self) -> List[Dict]:
        """Get all users, ordered by common name."""
        conn = self._require_connection()
        try:
            async with conn.execute(
                """SELECT common_name, virtual_address, real_address,
                          description, source, updated_at
                   FROM vpn_users
                   ORDER BY common_name"""
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DirectoryError(f"cannot read users: {e}") from e
        return [dict(row) for row in rows]

    async def upsert_user(self, common_name: str, virtual_address: str,
                          real_address: str = '', description: str = '',
                          source: str = SOURCE_OPNSENSE):
        """Add or update a user."""
        conn = self._require_connection()
        try:
            await conn.execute(
                """INSERT INTO vpn_users
                       (common_name, virtual_address, real_address, description, source, updated_at)
                   VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(common_name) DO UPDATE SET
                       virtual_address = ?, real_address = ?, description = ?,
                       source = ?, updated_at = CURRENT_TIMESTAMP""",
                (common_name, virtual_address, real_address, description, source,
                 virtual_address, real_address, description, source)
            )
            await conn.commit()
        except sqlite3.Error as e:
            raise DirectoryError(f"cannot store user {common_name}: {e}") from e

    async def add_static_clients(self, addresses: Iterable[str]) -> int:
        """
        Replace the static users with operator supplied client addresses.

        The address doubles as the common name so repeated runs do not
        duplicate rows. Static users from earlier runs that are not in
        addresses are deleted, an empty list clears them all.

        Returns:
            Number of addresses stored
        """
        common_names = []
        for address in addresses:
            address = str(address)
            common_name = f"static:{address}"
            await self.upsert_user(
                common_name=common_name,
                virtual_address=address,
                description="added from --clients",
                source=SOURCE_STATIC,
            )
            common_names.append(common_name)

        removed = await self.delete_users_except(common_names, source=SOURCE_STATIC)
        if common_names or removed:
            logger.info(f"Static clients: {len(common_names)} stored, {removed} removed")
        return len(common_names)

    async def delete_users_except(self, common_names: Iterable[str],
                                  source: str = SOURCE_OPNSENSE) -> int:
        """
        Delete users of a source whose common name is not in common_names.

        Returns:
            Number of users deleted
        """
        conn = self._require_connection()
        keep = list(common_names)
        placeholders = ', '.join('?' for _ in keep)
        query = "DELETE FROM vpn_users WHERE source = ?"
        if keep:
            query += f" AND common_name NOT IN ({placeholders})"
        try:
            cursor = await conn.execute(query, (source, *keep))
            await conn.commit()
        except sqlite3.Error as e:
            raise DirectoryError(f"cannot delete users: {e}") from e
        return cursor.rowcount


