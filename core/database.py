"""
Activity store using aiosqlite.
Keeps a history of delivered transfers so callers can list recent activity.
"""
import logging
from datetime import datetime
from typing import List, Optional

import aiosqlite

from core.models import TransferEvent, TransferKind, TransferNotification

logger = logging.getLogger(__name__)


class ActivityStore:
    """Async SQLite store of delivered transfers. Also usable as a notification sink."""

    def __init__(self, db_path: str):
        """Initialize store with path (":memory:" for an in-process database)."""
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to the database and create tables if needed."""
        self.conn = await aiosqlite.connect(self.db_path)
        self.conn.row_factory = aiosqlite.Row
        await self._create_tables()
        logger.info(f"Database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chain_id INTEGER NOT NULL,
                chain_name TEXT NOT NULL,
                kind TEXT NOT NULL,
                from_address TEXT NOT NULL,
                to_address TEXT NOT NULL,
                token_address TEXT,
                amount TEXT NOT NULL,
                tx_hash TEXT,
                block_number INTEGER,
                native_symbol TEXT,
                explorer_url_template TEXT,
                observed_at TEXT NOT NULL,
                UNIQUE(chain_id, kind, tx_hash)
            )
        """)

        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_transfers_observed_at ON transfers(observed_at)
        """)

        await self.conn.commit()

    async def deliver(self, notification: TransferNotification):
        await self.record(notification)

    async def record(self, notification: TransferNotification) -> bool:
        """
        Store a delivered transfer.

        Returns:
            False if the same (chain, kind, tx hash) was already stored
        """
        event = notification.event
        cursor = await self.conn.execute(
            """
            INSERT OR IGNORE INTO transfers
                (chain_id, chain_name, kind, from_address, to_address, token_address,
                 amount, tx_hash, block_number, native_symbol, explorer_url_template, observed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.chain_id,
                notification.chain_name,
                event.kind.value,
                event.from_address,
                event.to_address,
                event.token_address,
                event.amount,
                event.tx_hash,
                event.block_number,
                notification.native_symbol,
                notification.explorer_url_template,
                event.observed_at.isoformat(),
            )
        )
        await self.conn.commit()
        return cursor.rowcount > 0

    async def recent(self, limit: int = 50, chain_id: Optional[int] = None) -> List[TransferNotification]:
        """Most recent transfers first."""
        if chain_id is None:
            cursor = await self.conn.execute(
                "SELECT * FROM transfers ORDER BY id DESC LIMIT ?", (limit,)
            )
        else:
            cursor = await self.conn.execute(
                "SELECT * FROM transfers WHERE chain_id = ? ORDER BY id DESC LIMIT ?",
                (chain_id, limit)
            )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def count(self) -> int:
        cursor = await self.conn.execute("SELECT COUNT(*) FROM transfers")
        row = await cursor.fetchone()
        return row[0]

    @staticmethod
    def _row_to_notification(row) -> TransferNotification:
        event = TransferEvent(
            chain_id=row["chain_id"],
            kind=TransferKind(row["kind"]),
            from_address=row["from_address"],
            to_address=row["to_address"],
            token_address=row["token_address"],
            amount=row["amount"],
            tx_hash=row["tx_hash"],
            block_number=row["block_number"],
            observed_at=datetime.fromisoformat(row["observed_at"]),
        )
        return TransferNotification(
            event=event,
            chain_name=row["chain_name"],
            native_symbol=row["native_symbol"] or "",
            explorer_url_template=row["explorer_url_template"] or "",
        )
