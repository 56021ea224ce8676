"""Gateway-specific exceptions."""

from errors import MarketError


class GatewayError(MarketError):
    """Raised when a gateway cannot be reached or fails."""
    status_code = 502

    def __init__(self, service: str, operation: str, message: str):
        self.service = service
        self.operation = operation
        super().__init__(f"{service} {operation} failed: {message}")


class GatewayTimeoutError(GatewayError):
    """Raised when a gateway does not answer within the deadline."""
    status_code = 504


class GatewayResponseError(GatewayError):
    """Raised when a gateway answers with an unexpected status or body."""
    pass
