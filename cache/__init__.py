"""Display cache for user and category records.

The cache holds the denormalized records shown next to items (seller and buyer
display names, category with its parent name). It is advisory: entries are
filled on first use, dropped when a user row changes, and a failure to
refresh an entry never fails the request that triggered it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from database.exceptions import DatabaseError
from errors import NotFoundError

logger = logging.getLogger(__name__)

# User fields exposed next to items
USER_SIMPLE_FIELDS = ('id', 'account_name', 'num_sell_items')


class ReadWriteLock:
    """asyncio lock admitting many readers or one writer."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._readers)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class DisplayCache:
    """Caches user display records and the category tree."""

    def __init__(self) -> None:
        self.lock = ReadWriteLock()
        self._users: Dict[int, Dict[str, Any]] = {}
        self._categories: Dict[int, Dict[str, Any]] = {}

    async def load_categories(self, store) -> int:
        """(Re)load the whole category tree.

        Args:
            store: ``TradeStore`` to read from

        Returns:
            Number of categories loaded
        """
        rows = await store.get_categories()
        async with self.lock.write():
            self._categories = {row['id']: dict(row) for row in rows}
        logger.info(f"Loaded {len(rows)} categories")
        return len(rows)

    async def _category_row(self, store, category_id: int) -> Dict[str, Any]:
        async with self.lock.read():
            row = self._categories.get(category_id)
            loaded = bool(self._categories)
        if row is None and not loaded:
            await self.load_categories(store)
            async with self.lock.read():
                row = self._categories.get(category_id)
        if row is None:
            raise NotFoundError(f"Category {category_id} not found")
        return row

    async def get_category(self, store, category_id: int) -> Dict[str, Any]:
        """Get a category with its parent's name resolved.

        Raises:
            NotFoundError: If the category or its parent does not exist
        """
        category = dict(await self._category_row(store, category_id))
        category['parent_category_name'] = ''
        if category['parent_id']:
            parent = await self.get_category(store, category['parent_id'])
            category['parent_category_name'] = parent['category_name']
        return category

    async def root_category_id(self, store, category_id: int) -> int:
        """Walk up the tree to the top-level category of ``category_id``."""
        category = await self._category_row(store, category_id)
        seen = {category['id']}
        while category['parent_id']:
            category = await self._category_row(store, category['parent_id'])
            if category['id'] in seen:
                raise NotFoundError(f"Category {category_id} has no root")
            seen.add(category['id'])
        return category['id']

    async def get_user_simple(self, store, user_id: int) -> Dict[str, Any]:
        """Get the display record of a user, filling the cache on a miss.

        Raises:
            NotFoundError: If the user does not exist
        """
        async with self.lock.read():
            cached = self._users.get(user_id)
        if cached is not None:
            return dict(cached)

        user = await store.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")

        record = {field: user[field] for field in USER_SIMPLE_FIELDS}
        async with self.lock.write():
            self._users[user_id] = record
        return dict(record)

    async def invalidate_user(self, user_id: int) -> None:
        async with self.lock.write():
            self._users.pop(user_id, None)

    async def refresh_user(self, store, user_id: int) -> Optional[Dict[str, Any]]:
        """Replace the cached record of a user with a fresh read.

        Failures are logged and leave the entry dropped; the next read
        fills it again.
        """
        await self.invalidate_user(user_id)
        try:
            return await self.get_user_simple(store, user_id)
        except (DatabaseError, NotFoundError) as e:
            logger.warning(f"Could not refresh display record of user {user_id}: {e}")
            return None

    async def clear(self) -> None:
        async with self.lock.write():
            self._users.clear()
            self._categories.clear()
