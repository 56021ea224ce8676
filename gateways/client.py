"""Shared HTTP plumbing for gateway clients."""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .exceptions import GatewayError, GatewayResponseError, GatewayTimeoutError

logger = logging.getLogger(__name__)

ResponseModel = TypeVar('ResponseModel', bound=BaseModel)

# Connection setup gets a shorter budget than the whole call
CONNECT_TIMEOUT = 2.0


class GatewayClient:
    """Base class owning one ``httpx.AsyncClient`` per gateway."""

    service = 'gateway'

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize the client.

        Args:
            base_url: Default gateway URL, overridable per call
            timeout: Seconds allowed for one call
            client: Optional preconfigured ``httpx.AsyncClient``
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(CONNECT_TIMEOUT, self.timeout))
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def headers(self) -> Dict[str, str]:
        return {'Accept': 'application/json'}

    async def post(
        self,
        operation: str,
        path: str,
        body: Dict[str, Any],
        base_url: Optional[str] = None
    ) -> httpx.Response:
        """POST ``body`` as JSON and return the 200 response.

        Raises:
            GatewayTimeoutError: If the gateway does not answer in time
            GatewayError: If the request cannot be sent
            GatewayResponseError: If the gateway answers with a non-200 status
        """
        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        try:
            resp = await self.client.post(url, json=body, headers=self.headers())
        except httpx.TimeoutException as e:
            logger.error(f"{self.service} {operation} timed out: {e}")
            raise GatewayTimeoutError(self.service, operation, "request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{self.service} {operation} request error: {e}")
            raise GatewayError(self.service, operation, str(e)) from e

        if resp.status_code != 200:
            logger.error(f"{self.service} {operation} answered HTTP {resp.status_code}")
            raise GatewayResponseError(
                self.service,
                operation,
                f"unexpected HTTP status {resp.status_code}"
            )
        return resp

    def parse(self, operation: str, resp: httpx.Response, model: Type[ResponseModel]) -> ResponseModel:
        """Validate a JSON response body against ``model``."""
        try:
            return model.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"{self.service} {operation} returned an invalid body: {e}")
            raise GatewayResponseError(self.service, operation, "invalid response body") from e
