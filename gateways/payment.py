"""Payment gateway client."""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from errors import PaymentDeclinedError
from .client import GatewayClient

logger = logging.getLogger(__name__)

PAYMENT_OK = 'ok'


class PaymentResult(BaseModel):
    """Answer of ``POST /token``."""
    status: str


class PaymentClient(GatewayClient):
    """Authorizes card tokens against the payment gateway."""

    service = 'payment'

    def __init__(
        self,
        base_url: str,
        shop_id: str,
        api_key: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(base_url, timeout=timeout, client=client)
        self.shop_id = shop_id
        self.api_key = api_key

    async def authorize(self, token: str, price: int, base_url: Optional[str] = None) -> PaymentResult:
        """Charge ``price`` to the card behind ``token``.

        Args:
            token: Card token issued by the payment gateway to the buyer
            price: Amount to charge
            base_url: Gateway URL overriding the configured one

        Returns:
            The accepted result

        Raises:
            PaymentDeclinedError: If the gateway answers anything but ``ok``
            GatewayError: If the gateway cannot be reached or answers badly
        """
        resp = await self.post(
            'authorize',
            '/token',
            {
                'shop_id': self.shop_id,
                'token': token,
                'api_key': self.api_key,
                'price': price
            },
            base_url=base_url
        )
        result = self.parse('authorize', resp, PaymentResult)

        if result.status != PAYMENT_OK:
            logger.info(f"Payment of {price} declined with status {result.status}")
            raise PaymentDeclinedError(result.status)

        return result
