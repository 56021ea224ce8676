"""Transaction evidence and shipping lifecycles.

Evidence moves one edge at a time: wait_shipping -> wait_done -> done.
Shipping only moves forward along initial -> wait_pickup -> shipping -> done;
it may skip ahead when the shipment gateway reports a later status, and it
never goes back.
"""

import enum
from typing import Union

from errors import InvalidTransitionError


@enum.unique
class TransactionEvidenceStatus(enum.Enum):
    wait_shipping = 'wait_shipping'
    wait_done = 'wait_done'
    done = 'done'

    def __str__(self):
        return self.value


@enum.unique
class ShippingStatus(enum.Enum):
    initial = 'initial'
    wait_pickup = 'wait_pickup'
    shipping = 'shipping'
    done = 'done'

    def __str__(self):
        return self.value


EVIDENCE_TRANSITIONS = {
    TransactionEvidenceStatus.wait_shipping: TransactionEvidenceStatus.wait_done,
    TransactionEvidenceStatus.wait_done: TransactionEvidenceStatus.done,
}

SHIPPING_ORDER = (
    ShippingStatus.initial,
    ShippingStatus.wait_pickup,
    ShippingStatus.shipping,
    ShippingStatus.done,
)

# Shipment gateway statuses that count as handed over to the carrier
SHIPPED_STATUSES = frozenset({ShippingStatus.shipping, ShippingStatus.done})

# Shipping statuses in which the pickup label can be fetched
LABEL_STATUSES = frozenset({ShippingStatus.wait_pickup, ShippingStatus.shipping})


def check_evidence_transition(
    current: Union[str, TransactionEvidenceStatus],
    target: Union[str, TransactionEvidenceStatus]
) -> TransactionEvidenceStatus:
    """Validate a transaction evidence status change.

    Raises:
        InvalidTransitionError: If ``target`` is not the next status
    """
    current = TransactionEvidenceStatus(current)
    target = TransactionEvidenceStatus(target)
    if EVIDENCE_TRANSITIONS.get(current) != target:
        raise InvalidTransitionError('transaction evidence', current, target)
    return target


def check_shipping_transition(
    current: Union[str, ShippingStatus],
    target: Union[str, ShippingStatus]
) -> ShippingStatus:
    """Validate a shipping status change; staying put is allowed.

    Raises:
        InvalidTransitionError: If ``target`` comes before ``current``
    """
    current = ShippingStatus(current)
    target = ShippingStatus(target)
    if SHIPPING_ORDER.index(target) < SHIPPING_ORDER.index(current):
        raise InvalidTransitionError('shipping', current, target)
    return target
