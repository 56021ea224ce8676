"""Database error types."""

from errors import MarketError


class DatabaseError(MarketError):
    """Raised when a query, transaction or commit fails."""
    status_code = 500


class DatabaseSchemaError(DatabaseError):
    """Raised when schema files are missing, invalid or fail to apply."""
    pass


class LockOrderError(DatabaseError):
    """Raised when a row lock is requested out of the fixed table order."""
    pass
