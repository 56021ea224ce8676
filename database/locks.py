"""Lock ordering for row-level locks.

Every transaction takes its row locks in the same table order. Two
transactions that only ever lock forward along this order cannot wait on each
other in a cycle, so orchestrators cannot deadlock against one another.
"""
from typing import Tuple

from .exceptions import LockOrderError

# Tables in the order their rows must be locked
LOCK_ORDER: Tuple[str, ...] = (
    'items',
    'users',
    'transaction_evidences',
    'shippings',
)


class LockSequence:
    """Tracks the furthest table locked by one transaction."""

    def __init__(self) -> None:
        self._rank = -1
        self._table = None

    def acquire(self, table: str) -> None:
        """Record a lock on ``table``.

        Locking more rows of the table already reached is allowed; going back
        to an earlier table is not.

        Raises:
            LockOrderError: If ``table`` ranks before a table already locked
        """
        try:
            rank = LOCK_ORDER.index(table)
        except ValueError:
            raise LockOrderError(f"Table {table} is not part of the lock order")

        if rank < self._rank:
            raise LockOrderError(
                f"Cannot lock {table} after {self._table}: "
                f"locks must follow {' -> '.join(LOCK_ORDER)}"
            )
        self._rank = rank
        self._table = table
