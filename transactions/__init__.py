"""Transactions module for purchases and their delivery.

This module provides functionality for:
- Buying an item (payment authorization and shipment reservation)
- Handing the item to the carrier (pickup label)
- Confirming the carrier has it, and completing the sale on delivery
- Serving the pickup label to the seller

Every operation runs in one database transaction. Row locks are taken in the
order items -> users -> transaction_evidences -> shippings and held while the
gateways are called, so a failed gateway call rolls back everything the
operation wrote.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from cache import DisplayCache
from config import settings_conf
from database import Database, get_database
from errors import ConflictError, ForbiddenError, MarketError, NotFoundError, ValidationError
from gateways import (
    GatewayResponseError,
    PaymentClient,
    ShipmentClient,
    call_with_timeout,
    join_calls,
)
from items import ItemNotForSaleError, ItemStatus, check_item_transition, require_auth, utcnow
from .states import (
    TransactionEvidenceStatus,
    ShippingStatus,
    SHIPPED_STATUSES,
    LABEL_STATUSES,
    check_evidence_transition,
    check_shipping_transition,
)

logger = logging.getLogger(__name__)

# Names of the runtime gateway overrides in the configs table
PAYMENT_URL_CONFIG = 'payment_service_url'
SHIPMENT_URL_CONFIG = 'shipment_service_url'


def label_path(evidence_id: int) -> str:
    return f"/transactions/{evidence_id}.png"


class TransactionManager:
    """Manager class for purchase, shipping and completion."""

    def __init__(
        self,
        db: Optional[Database] = None,
        cache: Optional[DisplayCache] = None,
        payment: Optional[PaymentClient] = None,
        shipment: Optional[ShipmentClient] = None,
        gateway_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[Dict[str, Any]] = None
    ):
        """Initialize the transaction manager.

        Args:
            db: Optional database. If not provided, will get from database module.
            cache: Display cache shared with the other managers
            payment: Payment gateway client; built from settings if omitted
            shipment: Shipment gateway client; built from settings if omitted
            gateway_timeout: Seconds allowed for the gateway calls of one operation
            clock: Returns the current time; defaults to UTC wall clock
            settings: Settings to build defaults from; defaults to settings.conf
        """
        settings = settings or settings_conf
        self.db = db
        self.cache = cache or DisplayCache()
        self.gateway_timeout = gateway_timeout or settings['gateway_timeout']
        self.payment = payment or PaymentClient(
            settings['payment_service_url'],
            shop_id=settings['payment_shop_id'],
            api_key=settings['payment_api_key'],
            timeout=self.gateway_timeout
        )
        self.shipment = shipment or ShipmentClient(
            settings['shipment_service_url'],
            api_token=settings['shipment_api_token'],
            timeout=self.gateway_timeout
        )
        self.clock = clock or utcnow

    async def ensure_db(self):
        """Ensure we have a database."""
        if not self.db:
            self.db = await get_database()

    async def close(self) -> None:
        """Close the gateway clients."""
        await self.payment.aclose()
        await self.shipment.aclose()

    async def _gateway_urls(self, store) -> Tuple[str, str]:
        """Resolve gateway URLs, preferring the overrides in the configs table."""
        payment_url = await store.get_config(PAYMENT_URL_CONFIG)
        shipment_url = await store.get_config(SHIPMENT_URL_CONFIG)
        return payment_url or self.payment.base_url, shipment_url or self.shipment.base_url

    async def _evidence_for_item(self, item_id: int) -> Dict[str, Any]:
        """Unlocked read of the latest transaction evidence of an item."""
        async with self.db.connection() as store:
            evidence = await store.get_evidence_by_item(item_id)
        if not evidence:
            raise NotFoundError(f"Transaction evidence for item {item_id} not found")
        return evidence

    async def _lock_trade(self, store, item_id: int, evidence_id: int) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        """Lock item, evidence and shipping of a trade, in lock order.

        Raises:
            NotFoundError: If one of the rows is missing
            ItemNotForSaleError: If the item is not trading
        """
        item = await store.lock_item(item_id)
        if not item:
            raise NotFoundError(f"Item {item_id} not found")
        if ItemStatus(item['status']) != ItemStatus.trading:
            raise ItemNotForSaleError(f"Item {item_id} is not being traded")

        evidence = await store.lock_evidence(evidence_id)
        if not evidence:
            raise NotFoundError(f"Transaction evidence {evidence_id} not found")

        shipping = await store.lock_shipping(evidence_id)
        if not shipping:
            raise NotFoundError(f"Shipping of transaction {evidence_id} not found")

        return item, evidence, shipping

    async def _shipment_status(self, reserve_id: str, shipment_url: str) -> ShippingStatus:
        result = await call_with_timeout(
            self.shipment.get_status(reserve_id, base_url=shipment_url),
            self.gateway_timeout,
            'shipment',
            'status'
        )
        try:
            return ShippingStatus(result.status)
        except ValueError:
            raise GatewayResponseError('shipment', 'status', f"unknown status {result.status!r}")

    async def buy(self, item_id: int, buyer_id: int, auth_ok: bool, payment_token: str) -> int:
        """Buy an item on sale.

        The shipment reservation and the payment authorization run
        concurrently while the item and seller rows are locked. If either
        fails, nothing is written; a reservation made before the failure is
        left at the shipment gateway and logged.

        Args:
            item_id: Item to buy
            buyer_id: Authenticated user buying the item
            auth_ok: Whether the request's CSRF token matched the session
            payment_token: Card token issued by the payment gateway

        Returns:
            ID of the new transaction evidence

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            ValidationError: If the payment token is missing
            NotFoundError: If the item, seller, buyer or category is missing
            ItemNotForSaleError: If the item is not on sale
            ForbiddenError: If the buyer is the seller
            PaymentDeclinedError: If the payment gateway declines the card
            GatewayError: If a gateway fails or times out
        """
        require_auth(auth_ok)
        if not payment_token:
            raise ValidationError("Payment token is required")
        await self.ensure_db()

        reservation: Dict[str, Any] = {}
        try:
            async with self.db.transaction() as store:
                payment_url, shipment_url = await self._gateway_urls(store)

                item = await store.lock_item(item_id)
                if not item:
                    raise NotFoundError(f"Item {item_id} not found")
                if ItemStatus(item['status']) != ItemStatus.on_sale:
                    raise ItemNotForSaleError(f"Item {item_id} is not for sale")
                if item['seller_id'] == buyer_id:
                    raise ForbiddenError("You cannot buy your own item")

                seller = await store.lock_user(item['seller_id'])
                if not seller:
                    raise NotFoundError(f"Seller {item['seller_id']} not found")
                buyer = await store.get_user(buyer_id)
                if not buyer:
                    raise NotFoundError(f"Buyer {buyer_id} not found")

                root_category_id = await self.cache.root_category_id(store, item['category_id'])

                now = self.clock()
                evidence_id = await store.insert_evidence(
                    item['seller_id'],
                    buyer_id,
                    TransactionEvidenceStatus.wait_shipping.value,
                    item,
                    root_category_id,
                    now
                )
                status = check_item_transition(item['status'], ItemStatus.trading)
                await store.mark_item_bought(item_id, buyer_id, status.value, now)

                async def reserve():
                    result = await self.shipment.create(
                        to_address=buyer['address'],
                        to_name=buyer['account_name'],
                        from_address=seller['address'],
                        from_name=seller['account_name'],
                        base_url=shipment_url
                    )
                    reservation['reserve_id'] = result.reserve_id
                    return result

                reserved, _ = await join_calls(
                    reserve(),
                    self.payment.authorize(payment_token, item['price'], base_url=payment_url),
                    timeout=self.gateway_timeout
                )

                await store.insert_shipping(
                    evidence_id,
                    ShippingStatus.initial.value,
                    item,
                    reserved.reserve_id,
                    reserved.reserve_time,
                    buyer,
                    seller,
                    now
                )
        except Exception as e:
            if reservation:
                logger.warning(
                    f"Shipment reservation {reservation['reserve_id']} for item {item_id} "
                    f"is orphaned, purchase rolled back: {e}"
                )
            raise

        logger.info(f"Item {item_id} bought by user {buyer_id}, transaction {evidence_id}")
        return evidence_id

    async def ship(self, item_id: int, seller_id: int, auth_ok: bool) -> Dict[str, str]:
        """Request a pickup for a bought item and store its label.

        Args:
            item_id: Item to ship
            seller_id: Authenticated user, who must be the item's seller
            auth_ok: Whether the request's CSRF token matched the session

        Returns:
            Dict containing:
                - path: Where the seller fetches the label image
                - reserve_id: The shipment reservation

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            NotFoundError: If the item, evidence or shipping is missing
            ForbiddenError: If the caller is not the seller
            ConflictError: If the item is not waiting to be shipped
            GatewayError: If the shipment gateway fails or times out
        """
        require_auth(auth_ok)
        await self.ensure_db()

        pre = await self._evidence_for_item(item_id)
        if pre['seller_id'] != seller_id:
            raise ForbiddenError("Only the seller can ship this item")

        async with self.db.transaction() as store:
            _, shipment_url = await self._gateway_urls(store)
            _, evidence, shipping = await self._lock_trade(store, item_id, pre['id'])
            if evidence['seller_id'] != seller_id:
                raise ForbiddenError("Only the seller can ship this item")
            if TransactionEvidenceStatus(evidence['status']) != TransactionEvidenceStatus.wait_shipping:
                raise ConflictError(f"Transaction {evidence['id']} is not waiting for shipping")
            status = check_shipping_transition(shipping['status'], ShippingStatus.wait_pickup)

            label = await call_with_timeout(
                self.shipment.request_pickup(shipping['reserve_id'], base_url=shipment_url),
                self.gateway_timeout,
                'shipment',
                'request'
            )
            await store.set_shipping_label(evidence['id'], status.value, label, self.clock())

        logger.info(f"Pickup requested for transaction {evidence['id']} ({shipping['reserve_id']})")
        return {'path': label_path(evidence['id']), 'reserve_id': shipping['reserve_id']}

    async def ship_done(self, item_id: int, seller_id: int, auth_ok: bool) -> int:
        """Record that the carrier has picked up the item.

        Returns:
            ID of the transaction evidence

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            NotFoundError: If the item, evidence or shipping is missing
            ForbiddenError: If the caller is not the seller
            ConflictError: If the item is not waiting to be shipped or the
                shipment gateway does not report it shipped
            GatewayError: If the shipment gateway fails or times out
        """
        require_auth(auth_ok)
        await self.ensure_db()

        pre = await self._evidence_for_item(item_id)
        if pre['seller_id'] != seller_id:
            raise ForbiddenError("Only the seller can confirm shipping")

        async with self.db.transaction() as store:
            _, shipment_url = await self._gateway_urls(store)
            _, evidence, shipping = await self._lock_trade(store, item_id, pre['id'])
            if evidence['seller_id'] != seller_id:
                raise ForbiddenError("Only the seller can confirm shipping")
            if TransactionEvidenceStatus(evidence['status']) != TransactionEvidenceStatus.wait_shipping:
                raise ConflictError(f"Transaction {evidence['id']} is not waiting for shipping")

            reported = await self._shipment_status(shipping['reserve_id'], shipment_url)
            if reported not in SHIPPED_STATUSES:
                raise ConflictError(f"Shipment {shipping['reserve_id']} has not been picked up ({reported})")

            now = self.clock()
            shipping_status = check_shipping_transition(shipping['status'], reported)
            evidence_status = check_evidence_transition(evidence['status'], TransactionEvidenceStatus.wait_done)
            await store.set_shipping_status(evidence['id'], shipping_status.value, now)
            await store.set_evidence_status(evidence['id'], evidence_status.value, now)

        logger.info(f"Transaction {evidence['id']} shipped ({reported})")
        return evidence['id']

    async def complete(self, item_id: int, buyer_id: int, auth_ok: bool) -> int:
        """Complete a purchase once the item has been delivered.

        Returns:
            ID of the transaction evidence

        Raises:
            PreconditionFailedError: If ``auth_ok`` is False
            NotFoundError: If the item, evidence or shipping is missing
            ForbiddenError: If the caller is not the buyer
            ConflictError: If the transaction is not waiting for completion or
                the shipment gateway does not report delivery
            GatewayError: If the shipment gateway fails or times out
        """
        require_auth(auth_ok)
        await self.ensure_db()

        pre = await self._evidence_for_item(item_id)
        if pre['buyer_id'] != buyer_id:
            raise ForbiddenError("Only the buyer can complete this transaction")

        async with self.db.transaction() as store:
            _, shipment_url = await self._gateway_urls(store)
            item, evidence, shipping = await self._lock_trade(store, item_id, pre['id'])
            if evidence['buyer_id'] != buyer_id:
                raise ForbiddenError("Only the buyer can complete this transaction")
            if TransactionEvidenceStatus(evidence['status']) != TransactionEvidenceStatus.wait_done:
                raise ConflictError(f"Transaction {evidence['id']} is not waiting for completion")

            reported = await self._shipment_status(shipping['reserve_id'], shipment_url)
            if reported != ShippingStatus.done:
                raise ConflictError(f"Shipment {shipping['reserve_id']} has not been delivered ({reported})")

            now = self.clock()
            shipping_status = check_shipping_transition(shipping['status'], ShippingStatus.done)
            evidence_status = check_evidence_transition(evidence['status'], TransactionEvidenceStatus.done)
            item_status = check_item_transition(item['status'], ItemStatus.sold_out)
            await store.set_shipping_status(evidence['id'], shipping_status.value, now)
            await store.set_evidence_status(evidence['id'], evidence_status.value, now)
            await store.set_item_status(item_id, item_status.value, now)

        logger.info(f"Transaction {evidence['id']} completed, item {item_id} sold out")
        return evidence['id']

    async def get_label(self, evidence_id: int, seller_id: int) -> bytes:
        """Get the pickup label image of a transaction.

        Raises:
            NotFoundError: If the evidence or shipping is missing
            ForbiddenError: If the caller is not the seller, or the label is
                not available in the current shipping status
            MarketError: If the stored label is empty
        """
        await self.ensure_db()

        async with self.db.connection() as store:
            evidence = await store.get_evidence(evidence_id)
            if not evidence:
                raise NotFoundError(f"Transaction evidence {evidence_id} not found")
            if evidence['seller_id'] != seller_id:
                raise ForbiddenError("Only the seller can fetch the pickup label")

            shipping = await store.get_shipping(evidence_id)
            if not shipping:
                raise NotFoundError(f"Shipping of transaction {evidence_id} not found")

        if ShippingStatus(shipping['status']) not in LABEL_STATUSES:
            raise ForbiddenError("Pickup label is not available")
        if not shipping['img_binary']:
            logger.error(f"Shipping of transaction {evidence_id} has an empty label")
            raise MarketError("Pickup label image is empty")

        return bytes(shipping['img_binary'])


__all__ = [
    'TransactionManager',
    'TransactionEvidenceStatus',
    'ShippingStatus',
    'label_path',
]
