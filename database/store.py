"""Row access for the trading core.

All SQL the core runs lives here. ``Database.transaction()`` opens one pooled
transaction and yields a ``TradeStore`` bound to it; every ``lock_*`` call
takes a ``SELECT ... FOR UPDATE`` row lock that is held until the transaction
commits or rolls back. Leaving the ``async with`` block normally commits,
leaving it with an exception rolls back.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from asyncpg.exceptions import InterfaceError, PostgresError
from asyncpg.pool import Pool

from .exceptions import DatabaseError
from .locks import LockSequence

logger = logging.getLogger(__name__)


class TradeStore:
    """Queries for one connection, optionally inside a transaction."""

    def __init__(self, conn, locking: bool = False) -> None:
        """Initialize the store.

        Args:
            conn: asyncpg connection
            locking: True when ``conn`` has an open transaction, which is
                required for row locks
        """
        self.conn = conn
        self.locking = locking
        self.locks = LockSequence()

    async def _fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        row = await self.conn.fetchrow(query, *args)
        return dict(row) if row else None

    async def _lock_one(self, table: str, query: str, *args) -> Optional[Dict[str, Any]]:
        if not self.locking:
            raise DatabaseError(f"Locking {table} rows requires an open transaction")
        self.locks.acquire(table)
        return await self._fetch_one(f"{query} FOR UPDATE", *args)

    # Items

    async def get_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetch_one('SELECT * FROM items WHERE id = $1', item_id)

    async def lock_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        return await self._lock_one('items', 'SELECT * FROM items WHERE id = $1', item_id)

    async def mark_item_bought(self, item_id: int, buyer_id: int, status: str, now: datetime) -> None:
        await self.conn.execute(
            '''
            UPDATE items
            SET buyer_id = $2, status = $3, updated_at = $4
            WHERE id = $1
            ''',
            item_id,
            buyer_id,
            status,
            now
        )

    async def set_item_status(self, item_id: int, status: str, now: datetime) -> None:
        await self.conn.execute(
            'UPDATE items SET status = $2, updated_at = $3 WHERE id = $1',
            item_id,
            status,
            now
        )

    async def set_item_price(self, item_id: int, price: int, now: datetime) -> None:
        await self.conn.execute(
            'UPDATE items SET price = $2, updated_at = $3 WHERE id = $1',
            item_id,
            price,
            now
        )

    async def bump_item(self, item_id: int, now: datetime) -> None:
        """Move the item to the front of freshness-ordered listings."""
        await self.conn.execute(
            'UPDATE items SET created_at = $2, updated_at = $2 WHERE id = $1',
            item_id,
            now
        )

    # Users

    async def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetch_one('SELECT * FROM users WHERE id = $1', user_id)

    async def lock_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return await self._lock_one('users', 'SELECT * FROM users WHERE id = $1', user_id)

    async def set_last_bump(self, user_id: int, now: datetime) -> None:
        await self.conn.execute(
            'UPDATE users SET last_bump = $2 WHERE id = $1',
            user_id,
            now
        )

    # Transaction evidences

    async def get_evidence(self, evidence_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetch_one(
            'SELECT * FROM transaction_evidences WHERE id = $1',
            evidence_id
        )

    async def get_evidence_by_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetch_one(
            '''
            SELECT * FROM transaction_evidences
            WHERE item_id = $1
            ORDER BY id DESC
            LIMIT 1
            ''',
            item_id
        )

    async def lock_evidence(self, evidence_id: int) -> Optional[Dict[str, Any]]:
        return await self._lock_one(
            'transaction_evidences',
            'SELECT * FROM transaction_evidences WHERE id = $1',
            evidence_id
        )

    async def insert_evidence(
        self,
        seller_id: int,
        buyer_id: int,
        status: str,
        item: Dict[str, Any],
        root_category_id: int,
        now: datetime
    ) -> int:
        """Insert a transaction evidence snapshotting ``item``.

        Returns:
            The new evidence id
        """
        return await self.conn.fetchval(
            '''
            INSERT INTO transaction_evidences (
                seller_id, buyer_id, status, item_id, item_name,
                item_price, item_description, item_category_id,
                item_root_category_id, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $10)
            RETURNING id
            ''',
            seller_id,
            buyer_id,
            status,
            item['id'],
            item['name'],
            item['price'],
            item['description'],
            item['category_id'],
            root_category_id,
            now
        )

    async def set_evidence_status(self, evidence_id: int, status: str, now: datetime) -> None:
        await self.conn.execute(
            'UPDATE transaction_evidences SET status = $2, updated_at = $3 WHERE id = $1',
            evidence_id,
            status,
            now
        )

    # Shippings

    async def get_shipping(self, evidence_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetch_one(
            'SELECT * FROM shippings WHERE transaction_evidence_id = $1',
            evidence_id
        )

    async def lock_shipping(self, evidence_id: int) -> Optional[Dict[str, Any]]:
        return await self._lock_one(
            'shippings',
            'SELECT * FROM shippings WHERE transaction_evidence_id = $1',
            evidence_id
        )

    async def insert_shipping(
        self,
        evidence_id: int,
        status: str,
        item: Dict[str, Any],
        reserve_id: str,
        reserve_time: int,
        buyer: Dict[str, Any],
        seller: Dict[str, Any],
        now: datetime
    ) -> None:
        await self.conn.execute(
            '''
            INSERT INTO shippings (
                transaction_evidence_id, status, item_name, item_id,
                reserve_id, reserve_time, to_address, to_name,
                from_address, from_name, img_binary, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $12)
            ''',
            evidence_id,
            status,
            item['name'],
            item['id'],
            reserve_id,
            reserve_time,
            buyer['address'],
            buyer['account_name'],
            seller['address'],
            seller['account_name'],
            b'',
            now
        )

    async def set_shipping_label(self, evidence_id: int, status: str, label: bytes, now: datetime) -> None:
        await self.conn.execute(
            '''
            UPDATE shippings
            SET status = $2, img_binary = $3, updated_at = $4
            WHERE transaction_evidence_id = $1
            ''',
            evidence_id,
            status,
            label,
            now
        )

    async def set_shipping_status(self, evidence_id: int, status: str, now: datetime) -> None:
        await self.conn.execute(
            'UPDATE shippings SET status = $2, updated_at = $3 WHERE transaction_evidence_id = $1',
            evidence_id,
            status,
            now
        )

    # Categories and configs

    async def get_categories(self) -> List[Dict[str, Any]]:
        rows = await self.conn.fetch('SELECT * FROM categories ORDER BY id')
        return [dict(row) for row in rows]

    async def get_config(self, name: str) -> Optional[str]:
        return await self.conn.fetchval('SELECT val FROM configs WHERE name = $1', name)

    async def set_config(self, name: str, val: str) -> None:
        await self.conn.execute(
            '''
            INSERT INTO configs (name, val) VALUES ($1, $2)
            ON CONFLICT (name) DO UPDATE SET val = excluded.val
            ''',
            name,
            val
        )

    async def ping(self) -> bool:
        return await self.conn.fetchval('SELECT 1') == 1


class Database:
    """Opens connections and transactions on an asyncpg pool."""

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TradeStore]:
        """Open a transaction and yield a store bound to it.

        Raises:
            DatabaseError: If a query or the commit fails
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield TradeStore(conn, locking=True)
        except (PostgresError, InterfaceError) as e:
            logger.error(f"Transaction failed: {e}")
            raise DatabaseError(f"Transaction failed: {e}") from e

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[TradeStore]:
        """Yield a store for unlocked reads and single-statement writes."""
        try:
            async with self.pool.acquire() as conn:
                yield TradeStore(conn)
        except (PostgresError, InterfaceError) as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(f"Query failed: {e}") from e
