"""System operations: runtime gateway configuration and health."""

import logging
from typing import Any, Dict, Optional

from cache import DisplayCache
from database import Database, DatabaseError, get_database
from errors import ValidationError

logger = logging.getLogger(__name__)

GATEWAY_URL_CONFIGS = ('payment_service_url', 'shipment_service_url')


def validate_service_url(name: str, url: Optional[str]) -> str:
    if not url or not url.startswith(('http://', 'https://')):
        raise ValidationError(f"{name} must be an http(s) URL")
    return url.rstrip('/')


class SystemManager:
    """Manager class for runtime configuration."""

    def __init__(self, db: Optional[Database] = None, cache: Optional[DisplayCache] = None):
        self.db = db
        self.cache = cache or DisplayCache()

    async def ensure_db(self):
        """Ensure we have a database."""
        if not self.db:
            self.db = await get_database()

    async def initialize(self, payment_service_url: str, shipment_service_url: str) -> Dict[str, str]:
        """Point the trading core at new gateway URLs.

        Both URLs are stored in the configs table, where every later
        operation reads them. The display cache is emptied and the category
        tree reloaded.

        Raises:
            ValidationError: If a URL is not http(s)
        """
        urls = {
            'payment_service_url': validate_service_url('payment_service_url', payment_service_url),
            'shipment_service_url': validate_service_url('shipment_service_url', shipment_service_url)
        }
        await self.ensure_db()

        async with self.db.transaction() as store:
            for name in GATEWAY_URL_CONFIGS:
                await store.set_config(name, urls[name])

        await self.cache.clear()
        async with self.db.connection() as store:
            await self.cache.load_categories(store)

        logger.info(f"Gateways configured: payment={urls['payment_service_url']} shipment={urls['shipment_service_url']}")
        return urls

    async def health(self) -> Dict[str, Any]:
        """Report whether the database answers."""
        await self.ensure_db()
        try:
            async with self.db.connection() as store:
                ok = await store.ping()
        except DatabaseError as e:
            logger.error(f"Health check failed: {e}")
            ok = False

        return {
            'status': 'healthy' if ok else 'unhealthy',
            'database_status': 'connected' if ok else 'unavailable'
        }
