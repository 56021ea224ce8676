"""Shipment gateway client.

Every request carries the shop's token in the ``Authorization`` header.
"""

from typing import Dict, Optional

import httpx
from pydantic import BaseModel

from .client import GatewayClient
from .exceptions import GatewayResponseError


class Reservation(BaseModel):
    """Answer of ``POST /create``."""
    reserve_id: str
    reserve_time: int


class ShipmentStatus(BaseModel):
    """Answer of ``POST /status``."""
    status: str
    reserve_time: int = 0


class ShipmentClient(GatewayClient):
    """Reserves, labels and tracks deliveries with the shipment gateway."""

    service = 'shipment'

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(base_url, timeout=timeout, client=client)
        self.api_token = api_token

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        headers['Authorization'] = self.api_token
        return headers

    async def create(
        self,
        to_address: str,
        to_name: str,
        from_address: str,
        from_name: str,
        base_url: Optional[str] = None
    ) -> Reservation:
        """Reserve a delivery from the seller to the buyer."""
        resp = await self.post(
            'create',
            '/create',
            {
                'to_address': to_address,
                'to_name': to_name,
                'from_address': from_address,
                'from_name': from_name
            },
            base_url=base_url
        )
        return self.parse('create', resp, Reservation)

    async def request_pickup(self, reserve_id: str, base_url: Optional[str] = None) -> bytes:
        """Request a pickup and return the label image (PNG bytes)."""
        resp = await self.post('request', '/request', {'reserve_id': reserve_id}, base_url=base_url)
        if not resp.content:
            raise GatewayResponseError(self.service, 'request', "empty label")
        return resp.content

    async def get_status(self, reserve_id: str, base_url: Optional[str] = None) -> ShipmentStatus:
        """Ask where the delivery of ``reserve_id`` currently is."""
        resp = await self.post('status', '/status', {'reserve_id': reserve_id}, base_url=base_url)
        return self.parse('status', resp, ShipmentStatus)
