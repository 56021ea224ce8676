"""Items module for the seller-side item operations.

This module provides functionality for:
- Editing the price of an item that is on sale
- Bumping an item back to the top of freshness-ordered listings
- Reading an item with its display records

Item status changes made by purchases live in the ``transactions`` module.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from cache import DisplayCache
from database import Database, get_database
from errors import ConflictError, ForbiddenError, NotFoundError, PreconditionFailedError
from .states import (
    ItemStatus,
    ITEM_TRANSITIONS,
    BOUGHT_STATUSES,
    MIN_PRICE,
    MAX_PRICE,
    check_item_transition,
    validate_price,
)

logger = logging.getLogger(__name__)

# Default gap between two bumps by one seller
BUMP_COOLDOWN_SECONDS = 3


class ItemNotForSaleError(ConflictError):
    """Raised when an item is not in the status an operation needs."""
    pass


class BumpRateLimitedError(ConflictError):
    """Raised when a seller bumps again before the cooldown has passed."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_auth(auth_ok: bool) -> None:
    """Reject a request whose capability token did not match the session."""
    if not auth_ok:
        raise PreconditionFailedError("CSRF token mismatch")


def epoch(value: datetime) -> int:
    return int(value.timestamp())


def item_snapshot(item: Dict[str, Any]) -> Dict[str, int]:
    """Shape returned by edit and bump."""
    return {
        'item_id': item['id'],
        'item_price': item['price'],
        'item_created_at': epoch(item['created_at']),
        'item_updated_at': epoch(item['updated_at'])
    }


class ItemManager:
    """Manager class for seller-side item operations."""

    def __init__(
        self,
        db: Optional[Database] = None,
        cache: Optional[DisplayCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        bump_cooldown: float = BUMP_COOLDOWN_SECONDS
    ):
        """Initialize the item manager.

        Args:
            db: Optional database. If not provided, will get from database module.
            cache: Display cache shared with the other managers
            clock: Returns the current time; defaults to UTC wall clock
            bump_cooldown: Seconds a seller must wait between two bumps
        """
        self.db = db
        self.cache = cache or DisplayCache()
        self.clock = clock or utcnow
        self.bump_cooldown = timedelta(seconds=bump_cooldown)

    async def ensure_db(self):
        """Ensure we have a database."""
        if not self.db:
            self.db = await get_database()

    async def edit_price(self, item_id: int, seller_id: int, auth_ok: bool, price: int) -> Dict[str, int]:
        """Change the price of an item that is on sale.

        Args:
            item_id: Item to edit
            seller_id: Authenticated user, who must own the item
            auth_ok: Whether the request's CSRF token matched the session
            price: New price

        Returns:
            Item snapshot with the new price and timestamps

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            ValidationError: If the price is out of range
            NotFoundError: If the item does not exist
            ForbiddenError: If the caller does not own the item
            ItemNotForSaleError: If the item is no longer on sale
        """
        require_auth(auth_ok)
        validate_price(price)
        await self.ensure_db()

        async with self.db.connection() as store:
            item = await store.get_item(item_id)
        if not item:
            raise NotFoundError(f"Item {item_id} not found")
        if item['seller_id'] != seller_id:
            raise ForbiddenError("Only the seller can edit this item")

        async with self.db.transaction() as store:
            item = await store.lock_item(item_id)
            if not item:
                raise NotFoundError(f"Item {item_id} not found")
            if ItemStatus(item['status']) != ItemStatus.on_sale:
                raise ItemNotForSaleError(f"Item {item_id} is {item['status']}, only items on sale can be edited")

            await store.set_item_price(item_id, price, self.clock())
            item = await store.get_item(item_id)

        logger.info(f"Item {item_id} price set to {price}")
        return item_snapshot(item)

    async def bump(self, item_id: int, seller_id: int, auth_ok: bool) -> Dict[str, int]:
        """Move an item to the top of the listings.

        Args:
            item_id: Item to bump
            seller_id: Authenticated user, who must own the item
            auth_ok: Whether the request's CSRF token matched the session

        Returns:
            Item snapshot whose created_at is the bump time

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            NotFoundError: If the item or the seller does not exist
            ForbiddenError: If the caller does not own the item
            BumpRateLimitedError: If the seller bumped within the cooldown
        """
        require_auth(auth_ok)
        await self.ensure_db()

        async with self.db.transaction() as store:
            item = await store.lock_item(item_id)
            if not item:
                raise NotFoundError(f"Item {item_id} not found")
            if item['seller_id'] != seller_id:
                raise ForbiddenError("Only the seller can bump this item")

            seller = await store.lock_user(seller_id)
            if not seller:
                raise NotFoundError(f"User {seller_id} not found")

            now = self.clock()
            if seller['last_bump'] + self.bump_cooldown > now:
                raise BumpRateLimitedError("Bump not allowed yet")

            await store.bump_item(item_id, now)
            await store.set_last_bump(seller_id, now)
            item = await store.get_item(item_id)

        async with self.db.connection() as store:
            await self.cache.refresh_user(store, seller_id)
        logger.info(f"Item {item_id} bumped by user {seller_id}")
        return item_snapshot(item)

    async def get_item(self, item_id: int, viewer_id: int) -> Dict[str, Any]:
        """Get an item with its seller and category display records.

        Buyer, transaction and shipping fields are only filled in when the
        viewer is the item's seller or buyer and the item has been bought.

        Raises:
            NotFoundError: If the item or one of its display records is missing
        """
        await self.ensure_db()

        async with self.db.connection() as store:
            item = await store.get_item(item_id)
            if not item:
                raise NotFoundError(f"Item {item_id} not found")

            category = await self.cache.get_category(store, item['category_id'])
            seller = await self.cache.get_user_simple(store, item['seller_id'])

            detail = {
                'id': item['id'],
                'seller_id': item['seller_id'],
                'seller': seller,
                'status': item['status'],
                'name': item['name'],
                'price': item['price'],
                'description': item['description'],
                'image_url': f"/upload/{item['image_name']}",
                'category_id': item['category_id'],
                'category': category,
                'created_at': epoch(item['created_at'])
            }

            buyer_id = item['buyer_id']
            if ItemStatus(item['status']) in BOUGHT_STATUSES and viewer_id in (item['seller_id'], buyer_id):
                detail['buyer_id'] = buyer_id
                detail['buyer'] = await self.cache.get_user_simple(store, buyer_id)

                evidence = await store.get_evidence_by_item(item_id)
                if evidence:
                    shipping = await store.get_shipping(evidence['id'])
                    if not shipping:
                        raise NotFoundError(f"Shipping of transaction {evidence['id']} not found")
                    detail['transaction_evidence_id'] = evidence['id']
                    detail['transaction_evidence_status'] = evidence['status']
                    detail['shipping_status'] = shipping['status']

        return detail


__all__ = [
    'ItemManager',
    'ItemStatus',
    'ITEM_TRANSITIONS',
    'BOUGHT_STATUSES',
    'MIN_PRICE',
    'MAX_PRICE',
    'BUMP_COOLDOWN_SECONDS',
    'ItemNotForSaleError',
    'BumpRateLimitedError',
    'check_item_transition',
    'validate_price',
    'require_auth',
    'item_snapshot',
    'utcnow',
]
