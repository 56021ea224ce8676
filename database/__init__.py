"""Database module for managing connections to PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
- Transactional row access for the trading core (see ``store``)
"""

import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .exceptions import DatabaseError, DatabaseSchemaError, LockOrderError
from .lib.schema_manager import SchemaManager
from .locks import LOCK_ORDER, LockSequence
from .store import Database, TradeStore

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

def _session_settings(gateway_timeout: float) -> Dict[str, str]:
    """Server settings for every pooled connection.

    Purchase and delivery transactions sit idle while the gateways answer,
    holding row locks; the server ends any that stay idle far longer than a
    gateway call may take.
    """
    idle_ms = int(gateway_timeout * 1000) * 4
    return {
        'statement_timeout': '30000',
        'lock_timeout': str(idle_ms),
        'idle_in_transaction_session_timeout': str(idle_ms),
        'timezone': 'UTC',
    }

def _get_connection_kwargs(db_url: str, gateway_timeout: float) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL; ``sslmode`` is read from its query
        gateway_timeout: Seconds a gateway call may take under a row lock

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    kwargs: Dict[str, Any] = {'server_settings': _session_settings(gateway_timeout)}

    sslmode = params.get('sslmode', ['disable'])[0]
    if sslmode in ('verify-full', 'verify-ca'):
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = sslmode == 'verify-full'
        kwargs['ssl'] = ssl_context
    elif sslmode == 'require':
        kwargs['ssl'] = 'require'

    return kwargs

def _strip_query(db_url: str) -> str:
    """Drop query parameters that asyncpg would not understand."""
    return db_url.split('?', 1)[0]

@backoff.on_exception(
    backoff.expo,
    (OSError, asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Open the connection pool and bring the schema up to date.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop the trading tables and create them again

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be created or migrated
    """
    global _pool, _schema_manager

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    try:
        _pool = await asyncpg.create_pool(
            _strip_query(url),
            min_size=2,
            max_size=20,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            **_get_connection_kwargs(url, settings_conf['gateway_timeout'])
        )

        _schema_manager = SchemaManager(_pool)
        if force_recreate:
            logger.warning("Force recreate requested, dropping trading tables")
            await _schema_manager.drop()
        await _schema_manager.initialize()

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def get_database() -> Database:
    """Get a ``Database`` bound to the shared pool."""
    return Database(await get_pool())

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'get_database',
    'close',
    'Database',
    'TradeStore',
    'LOCK_ORDER',
    'LockSequence',
    'DatabaseError',
    'DatabaseSchemaError',
    'LockOrderError',
]
