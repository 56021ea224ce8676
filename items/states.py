"""Item lifecycle states and the edges between them."""

import enum
from typing import Dict, FrozenSet, Union

from errors import InvalidTransitionError, ValidationError

# Inclusive price range for listed items
MIN_PRICE = 100
MAX_PRICE = 1000000


@enum.unique
class ItemStatus(enum.Enum):
    on_sale = 'on_sale'
    trading = 'trading'
    sold_out = 'sold_out'
    stop = 'stop'
    cancel = 'cancel'

    def __str__(self):
        return self.value


# stop and cancel are imposed from outside the trading core and are terminal
ITEM_TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.on_sale: frozenset({ItemStatus.trading}),
    ItemStatus.trading: frozenset({ItemStatus.sold_out}),
    ItemStatus.sold_out: frozenset(),
    ItemStatus.stop: frozenset(),
    ItemStatus.cancel: frozenset(),
}

# Statuses in which an item has a buyer
BOUGHT_STATUSES = frozenset({ItemStatus.trading, ItemStatus.sold_out})


def check_item_transition(current: Union[str, ItemStatus], target: Union[str, ItemStatus]) -> ItemStatus:
    """Validate an item status change.

    Returns:
        The target status

    Raises:
        InvalidTransitionError: If ``current`` has no edge to ``target``
    """
    current = ItemStatus(current)
    target = ItemStatus(target)
    if target not in ITEM_TRANSITIONS[current]:
        raise InvalidTransitionError('item', current, target)
    return target


def validate_price(price) -> int:
    """Check that ``price`` is an integer within the listing range.

    Raises:
        ValidationError: If the price is not an integer or out of range
    """
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValidationError("Price must be an integer")
    if price < MIN_PRICE or price > MAX_PRICE:
        raise ValidationError(f"Price must be between {MIN_PRICE} and {MAX_PRICE}")
    return price
