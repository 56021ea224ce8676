"""Shared fixtures: an in-memory database and scripted gateways.

``MemoryDatabase`` mirrors ``database.Database``: ``transaction()`` yields a
store whose ``lock_*`` calls take per-row asyncio locks (checked against the
table lock order) held until the block exits, and whose writes are staged and
only applied when the block exits without an exception.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from cache import DisplayCache
from database.exceptions import DatabaseError
from database.locks import LockSequence
from gateways import Reservation, ShipmentStatus
from errors import PaymentDeclinedError
from items import ItemManager
from system import SystemManager
from transactions import TransactionManager

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

SELLER_ID = 1
BUYER_ID = 2
OTHER_ID = 3
ITEM_ID = 1

USERS = [
    {'id': SELLER_ID, 'account_name': 'seller', 'address': 'Seller Street 1'},
    {'id': BUYER_ID, 'account_name': 'buyer', 'address': 'Buyer Avenue 2'},
    {'id': OTHER_ID, 'account_name': 'other', 'address': 'Other Road 3'},
]

CATEGORIES = [
    {'id': 1, 'parent_id': 0, 'category_name': 'Furniture'},
    {'id': 10, 'parent_id': 1, 'category_name': 'Sofa'},
    {'id': 2, 'parent_id': 0, 'category_name': 'Books'},
]


class FakeClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class MemoryStore:
    """``TradeStore`` over in-memory tables."""

    def __init__(self, db: 'MemoryDatabase', locking: bool = False):
        self.db = db
        self.locking = locking
        self.locks = LockSequence()
        self.held: List[asyncio.Lock] = []
        self.pending: Dict[tuple, Dict[str, Any]] = {}

    def _read(self, table: str, key) -> Optional[Dict[str, Any]]:
        if (table, key) in self.pending:
            return copy.deepcopy(self.pending[(table, key)])
        row = self.db.tables[table].get(key)
        return copy.deepcopy(row) if row else None

    def _write(self, table: str, key, **changes) -> None:
        row = self._read(table, key)
        if row is None:
            return
        row.update(changes)
        self._stage(table, key, row)

    def _stage(self, table: str, key, row: Dict[str, Any]) -> None:
        if self.locking:
            self.pending[(table, key)] = row
        else:
            self.db.tables[table][key] = row

    async def _lock(self, table: str, key) -> Optional[Dict[str, Any]]:
        if not self.locking:
            raise DatabaseError(f"Locking {table} rows requires an open transaction")
        self.locks.acquire(table)
        lock = self.db.row_lock(table, key)
        if lock not in self.held:
            await lock.acquire()
            self.held.append(lock)
        self.db.lock_log.append((table, key))
        await asyncio.sleep(0)
        return self._read(table, key)

    def commit(self) -> None:
        for (table, key), row in self.pending.items():
            self.db.tables[table][key] = row
        self.pending.clear()
        self.db.commits += 1

    def release(self) -> None:
        for lock in self.held:
            lock.release()
        self.held.clear()

    # Items

    async def get_item(self, item_id):
        return self._read('items', item_id)

    async def lock_item(self, item_id):
        return await self._lock('items', item_id)

    async def mark_item_bought(self, item_id, buyer_id, status, now):
        self._write('items', item_id, buyer_id=buyer_id, status=status, updated_at=now)

    async def set_item_status(self, item_id, status, now):
        self._write('items', item_id, status=status, updated_at=now)

    async def set_item_price(self, item_id, price, now):
        self._write('items', item_id, price=price, updated_at=now)

    async def bump_item(self, item_id, now):
        self._write('items', item_id, created_at=now, updated_at=now)

    # Users

    async def get_user(self, user_id):
        if self.db.down:
            raise DatabaseError("Query failed: connection refused")
        return self._read('users', user_id)

    async def lock_user(self, user_id):
        return await self._lock('users', user_id)

    async def set_last_bump(self, user_id, now):
        self._write('users', user_id, last_bump=now)

    # Transaction evidences

    async def get_evidence(self, evidence_id):
        return self._read('transaction_evidences', evidence_id)

    async def get_evidence_by_item(self, item_id):
        keys = set(self.db.tables['transaction_evidences'])
        keys.update(key for table, key in self.pending if table == 'transaction_evidences')
        matches = [
            row for row in (self._read('transaction_evidences', key) for key in sorted(keys))
            if row and row['item_id'] == item_id
        ]
        return matches[-1] if matches else None

    async def lock_evidence(self, evidence_id):
        return await self._lock('transaction_evidences', evidence_id)

    async def insert_evidence(self, seller_id, buyer_id, status, item, root_category_id, now):
        evidence_id = self.db.next_evidence_id()
        self._stage('transaction_evidences', evidence_id, {
            'id': evidence_id,
            'seller_id': seller_id,
            'buyer_id': buyer_id,
            'status': status,
            'item_id': item['id'],
            'item_name': item['name'],
            'item_price': item['price'],
            'item_description': item['description'],
            'item_category_id': item['category_id'],
            'item_root_category_id': root_category_id,
            'created_at': now,
            'updated_at': now
        })
        return evidence_id

    async def set_evidence_status(self, evidence_id, status, now):
        self._write('transaction_evidences', evidence_id, status=status, updated_at=now)

    # Shippings

    async def get_shipping(self, evidence_id):
        return self._read('shippings', evidence_id)

    async def lock_shipping(self, evidence_id):
        return await self._lock('shippings', evidence_id)

    async def insert_shipping(self, evidence_id, status, item, reserve_id, reserve_time, buyer, seller, now):
        self._stage('shippings', evidence_id, {
            'transaction_evidence_id': evidence_id,
            'status': status,
            'item_name': item['name'],
            'item_id': item['id'],
            'reserve_id': reserve_id,
            'reserve_time': reserve_time,
            'to_address': buyer['address'],
            'to_name': buyer['account_name'],
            'from_address': seller['address'],
            'from_name': seller['account_name'],
            'img_binary': b'',
            'created_at': now,
            'updated_at': now
        })

    async def set_shipping_label(self, evidence_id, status, label, now):
        self._write('shippings', evidence_id, status=status, img_binary=label, updated_at=now)

    async def set_shipping_status(self, evidence_id, status, now):
        self._write('shippings', evidence_id, status=status, updated_at=now)

    # Categories and configs

    async def get_categories(self):
        self.db.category_loads += 1
        return [dict(row) for _, row in sorted(self.db.tables['categories'].items())]

    async def get_config(self, name):
        row = self._read('configs', name)
        return row['val'] if row else None

    async def set_config(self, name, val):
        self._stage('configs', name, {'name': name, 'val': val})

    async def ping(self):
        if self.db.down:
            raise DatabaseError("Query failed: connection refused")
        return True


class MemoryDatabase:
    """``database.Database`` double over plain dicts."""

    def __init__(self):
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {
            'items': {},
            'users': {},
            'transaction_evidences': {},
            'shippings': {},
            'categories': {},
            'configs': {},
        }
        self._row_locks: Dict[tuple, asyncio.Lock] = {}
        self._evidence_seq = 0
        self.lock_log: List[tuple] = []
        self.commits = 0
        self.category_loads = 0
        self.down = False

    @classmethod
    def seeded(cls) -> 'MemoryDatabase':
        db = cls()
        for user in USERS:
            db.add_user(**user)
        for category in CATEGORIES:
            db.tables['categories'][category['id']] = dict(category)
        db.add_item(ITEM_ID, seller_id=SELLER_ID, price=500, category_id=10)
        return db

    def add_user(self, id: int, account_name: str, address: str) -> None:
        self.tables['users'][id] = {
            'id': id,
            'account_name': account_name,
            'address': address,
            'num_sell_items': 1,
            'last_bump': datetime(2000, 1, 1, tzinfo=timezone.utc),
            'created_at': START
        }

    def add_item(self, id: int, seller_id: int, price: int, category_id: int, status: str = 'on_sale') -> None:
        self.tables['items'][id] = {
            'id': id,
            'seller_id': seller_id,
            'buyer_id': None,
            'status': status,
            'name': f"Item {id}",
            'price': price,
            'description': f"Description of item {id}",
            'image_name': f"{id}.jpg",
            'category_id': category_id,
            'created_at': START - timedelta(days=1),
            'updated_at': START - timedelta(days=1)
        }

    def row(self, table: str, key) -> Optional[Dict[str, Any]]:
        return self.tables[table].get(key)

    def row_lock(self, table: str, key) -> asyncio.Lock:
        if (table, key) not in self._row_locks:
            self._row_locks[(table, key)] = asyncio.Lock()
        return self._row_locks[(table, key)]

    def next_evidence_id(self) -> int:
        self._evidence_seq += 1
        return self._evidence_seq

    @asynccontextmanager
    async def transaction(self):
        store = MemoryStore(self, locking=True)
        try:
            yield store
            store.commit()
        finally:
            store.release()

    @asynccontextmanager
    async def connection(self):
        yield MemoryStore(self)


class FakePayment:
    """Scripted payment gateway."""

    def __init__(self, status: str = 'ok', delay: float = 0, error: Optional[Exception] = None):
        self.base_url = 'http://payment.test'
        self.status = status
        self.delay = delay
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.cancelled = 0
        self.closed = False

    async def authorize(self, token, price, base_url=None):
        self.calls.append({'token': token, 'price': price, 'base_url': base_url})
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error:
            raise self.error
        if self.status != 'ok':
            raise PaymentDeclinedError(self.status)
        return {'status': 'ok'}

    async def aclose(self):
        self.closed = True


class FakeShipment:
    """Scripted shipment gateway."""

    def __init__(self, delay: float = 0):
        self.base_url = 'http://shipment.test'
        self.status = 'initial'
        self.label = b'\x89PNG label'
        self.delay = delay
        self.create_error: Optional[Exception] = None
        self.request_error: Optional[Exception] = None
        self.reservations: List[Dict[str, Any]] = []
        self.pickups: List[str] = []
        self.cancelled = 0
        self.closed = False

    async def create(self, to_address, to_name, from_address, from_name, base_url=None):
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.create_error:
            raise self.create_error
        reserve_id = f"R{len(self.reservations) + 1}"
        self.reservations.append({
            'reserve_id': reserve_id,
            'to_address': to_address,
            'to_name': to_name,
            'from_address': from_address,
            'from_name': from_name,
            'base_url': base_url
        })
        return Reservation(reserve_id=reserve_id, reserve_time=1700000000)

    async def request_pickup(self, reserve_id, base_url=None):
        if self.request_error:
            raise self.request_error
        self.pickups.append(reserve_id)
        return self.label

    async def get_status(self, reserve_id, base_url=None):
        return ShipmentStatus(status=self.status, reserve_time=1700000000)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def db():
    """In-memory database with users, categories and item #1 on sale."""
    return MemoryDatabase.seeded()

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def cache():
    return DisplayCache()

@pytest.fixture
def payment():
    return FakePayment()

@pytest.fixture
def shipment():
    return FakeShipment()

@pytest.fixture
def item_manager(db, cache, clock):
    return ItemManager(db=db, cache=cache, clock=clock, bump_cooldown=3)

@pytest.fixture
def transaction_manager(db, cache, clock, payment, shipment):
    return TransactionManager(
        db=db,
        cache=cache,
        payment=payment,
        shipment=shipment,
        gateway_timeout=0.5,
        clock=clock
    )

@pytest.fixture
def system_manager(db, cache):
    return SystemManager(db=db, cache=cache)

@pytest_asyncio.fixture
async def bought(transaction_manager):
    """Item #1 bought by the buyer; returns the transaction evidence id."""
    return await transaction_manager.buy(ITEM_ID, BUYER_ID, True, 'card-token')

