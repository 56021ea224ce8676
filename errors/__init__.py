"""Error taxonomy shared by the trading core.

Every error raised by a core operation derives from ``MarketError`` and carries
the HTTP status the API layer answers with. Raising one of these inside an
open transaction rolls that transaction back.
"""
from typing import Optional


class MarketError(Exception):
    """Base class for trading errors."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(MarketError):
    """Raised when input is rejected before any state is touched."""
    status_code = 400


class PreconditionFailedError(MarketError):
    """Raised when the caller's capability token does not match the session."""
    status_code = 422


class ForbiddenError(MarketError):
    """Raised when the caller does not own the row it is acting on."""
    status_code = 403


class NotFoundError(MarketError):
    """Raised when a referenced row does not exist."""
    status_code = 404


class ConflictError(MarketError):
    """Raised when current state does not allow the operation.

    Not retriable until something outside the request changes the state.
    """
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Raised when a status change would skip or reverse a lifecycle edge."""

    def __init__(self, entity: str, current, target):
        self.entity = entity
        self.current = str(current)
        self.target = str(target)
        super().__init__(f"{entity} cannot move from {self.current} to {self.target}")


class PaymentDeclinedError(MarketError):
    """Raised when the payment gateway answers with anything but ``ok``."""
    status_code = 400

    def __init__(self, payment_status: str):
        self.payment_status = payment_status
        messages = {
            'invalid': "Card information is invalid",
            'fail': "Card balance is insufficient",
        }
        super().__init__(messages.get(payment_status, f"Payment was not accepted: {payment_status}"))


__all__ = [
    'MarketError',
    'ValidationError',
    'PreconditionFailedError',
    'ForbiddenError',
    'NotFoundError',
    'ConflictError',
    'InvalidTransitionError',
    'PaymentDeclinedError',
]
