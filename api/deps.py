"""Shared dependencies for the API routers."""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status

from cache import DisplayCache
from config import settings_conf
from database import Database, get_database
from errors import MarketError
from items import ItemManager
from system import SystemManager
from transactions import TransactionManager

logger = logging.getLogger(__name__)

# One display cache per process, shared by all managers
display_cache = DisplayCache()

# Holds the gateway HTTP clients for the life of the process
_transaction_manager: Optional[TransactionManager] = None

def get_cache() -> DisplayCache:
    return display_cache

async def get_item_manager(
    db: Database = Depends(get_database),
    cache: DisplayCache = Depends(get_cache)
) -> ItemManager:
    return ItemManager(db=db, cache=cache, bump_cooldown=settings_conf['bump_cooldown_seconds'])

async def get_transaction_manager(
    db: Database = Depends(get_database),
    cache: DisplayCache = Depends(get_cache)
) -> TransactionManager:
    global _transaction_manager
    if _transaction_manager is None:
        _transaction_manager = TransactionManager(db=db, cache=cache)
    return _transaction_manager

async def get_system_manager(
    db: Database = Depends(get_database),
    cache: DisplayCache = Depends(get_cache)
) -> SystemManager:
    return SystemManager(db=db, cache=cache)

async def close_managers() -> None:
    """Close the gateway clients held by the transaction manager."""
    global _transaction_manager
    if _transaction_manager is not None:
        await _transaction_manager.close()
        _transaction_manager = None

def http_error(e: Exception) -> HTTPException:
    """Map an exception raised by a manager to an HTTP error."""
    if isinstance(e, MarketError):
        return HTTPException(status_code=e.status_code, detail=str(e))
    logger.error(f"Unexpected error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )
