"""
Connection to the local finance database using aiosqlite.

The sync engine never parses the database; it only needs to flush the WAL
before reading the file and to drop the connection before the file is replaced.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteConnection:
    """Single lazily-opened connection that can be reset."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> aiosqlite.Connection:
        """Open the connection if it is not already open."""
        async with self._lock:
            if self._connection is not None:
                return self._connection

            # Ensure database directory exists
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            conn = await aiosqlite.connect(str(self.db_path))
            conn.row_factory = aiosqlite.Row
            try:
                # Enable WAL mode for better concurrency
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA foreign_keys=ON")
            except sqlite3.Error:
                await conn.close()
                raise
            self._connection = conn
            logger.debug(f"Opened database {self.db_path}")
            return conn

    async def disconnect(self) -> None:
        """Close the connection."""
        async with self._lock:
            if self._connection is None:
                return
            await self._connection.close()
            self._connection = None
            logger.debug(f"Closed database {self.db_path}")

    async def reset(self) -> None:
        """Drop the connection so the next use reopens the file on disk."""
        await self.disconnect()
        logger.info("Database connection reset")

    async def checkpoint(self) -> bool:
        """
        Fold the WAL into the main database file.

        A file SQLite cannot open is left as it is, so a damaged database can
        still be backed up byte for byte and replaced.

        Returns:
            True if the WAL was checkpointed
        """
        if not self.db_path.exists():
            return False
        try:
            conn = await self.connect()
            await conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await conn.commit()
        except sqlite3.DatabaseError as e:
            logger.warning(f"Could not checkpoint {self.db_path}, continuing with the raw file: {e}")
            await self.disconnect()
            return False
        return True
