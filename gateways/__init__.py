"""Clients for the external payment and shipment gateways.

This module provides:
- The gateway error hierarchy (transport failure, timeout, unexpected answer)
- ``join_calls``, which runs gateway calls side by side under one deadline
- ``PaymentClient`` and ``ShipmentClient`` (see ``payment`` and ``shipment``)

Gateway calls are made while row locks are held, so every call is bounded and
never retried.
"""

import asyncio
import logging
from typing import Any, Awaitable, List

from .exceptions import GatewayError, GatewayTimeoutError, GatewayResponseError
from .payment import PaymentClient, PaymentResult
from .shipment import ShipmentClient, Reservation, ShipmentStatus

logger = logging.getLogger(__name__)


async def join_calls(*calls: Awaitable[Any], timeout: float) -> List[Any]:
    """Run gateway calls concurrently and wait for all of them.

    The first call to fail cancels the others. Every task is awaited before
    this returns or raises, so no call outlives the caller.

    Args:
        *calls: Coroutines to run
        timeout: Seconds to wait for all calls together

    Returns:
        Results in the order the calls were given

    Raises:
        GatewayTimeoutError: If the calls did not all finish in time
        Exception: The first failure raised by a call
    """
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        done, pending = await asyncio.wait(
            tasks,
            timeout=timeout,
            return_when=asyncio.FIRST_EXCEPTION
        )
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    if pending:
        logger.error(f"{len(pending)} of {len(tasks)} gateway calls timed out after {timeout}s")
        raise GatewayTimeoutError('gateway', 'join', f"no answer within {timeout}s")

    return [task.result() for task in tasks]


async def call_with_timeout(call: Awaitable[Any], timeout: float, service: str, operation: str) -> Any:
    """Await a single gateway call, giving up after ``timeout`` seconds.

    Raises:
        GatewayTimeoutError: If the call did not finish in time
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"{service} {operation} timed out after {timeout}s")
        raise GatewayTimeoutError(service, operation, f"no answer within {timeout}s") from e


__all__ = [
    'GatewayError',
    'GatewayTimeoutError',
    'GatewayResponseError',
    'join_calls',
    'call_with_timeout',
    'PaymentClient',
    'PaymentResult',
    'ShipmentClient',
    'Reservation',
    'ShipmentStatus',
]
