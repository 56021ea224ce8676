"""Authentication module using signed session tokens.

This module provides:
1. Session tokens (JWT) carrying the user id and a per-session CSRF token
2. The ``get_current_user`` dependency for protecting routes
3. CSRF token comparison, which yields the ``auth_ok`` flag of core operations
4. The ``require_admin`` dependency guarding gateway configuration

Credential checks (login, registration) happen in the account service, which
shares ``jwt_secret`` and calls ``issue_session_token`` once a password checks
out. Operators issue tokens from the command line with ``python -m auth``.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt
from pydantic import BaseModel

from config import settings_conf
from database import Database, DatabaseError, get_database

# Configure logging
logger = logging.getLogger(__name__)

# Constants
SESSION_EXPIRY_DAYS = 30
JWT_SECRET = settings_conf.get('jwt_secret') or secrets.token_urlsafe(32)  # Random per process unless configured
JWT_ALGORITHM = "HS256"
ADMIN_TOKEN = settings_conf.get('admin_token') or ''

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass

class SessionUser(BaseModel):
    """Authenticated user together with the session's CSRF token."""
    id: int
    account_name: str
    address: str
    csrf_token: str

def issue_session_token(user_id: int, expires_in: Optional[timedelta] = None) -> Dict[str, Any]:
    """Create a session token for a user.

    Args:
        user_id: The user the session belongs to
        expires_in: Optional lifetime, defaults to SESSION_EXPIRY_DAYS

    Returns:
        Dict containing:
            - token: Bearer token for future requests
            - csrf_token: Token the client echoes in state-changing requests
            - expires_at: Session expiration timestamp
    """
    csrf_token = secrets.token_hex(20)
    expires_at = datetime.now(timezone.utc) + (expires_in or timedelta(days=SESSION_EXPIRY_DAYS))
    token = jwt.encode(
        {
            'sub': str(user_id),
            'csrf_token': csrf_token,
            'exp': int(expires_at.timestamp())
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM
    )
    return {
        'token': token,
        'csrf_token': csrf_token,
        'expires_at': expires_at.isoformat()
    }

def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify a session token and return its claims.

    Raises:
        SessionExpiredError: If the token has expired
        AuthError: If the token is invalid
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise SessionExpiredError("Session has expired")
    except jwt.JWTError as e:
        raise AuthError(f"Invalid token: {str(e)}")

    try:
        return {'user_id': int(payload['sub']), 'csrf_token': payload['csrf_token']}
    except (KeyError, TypeError, ValueError):
        raise AuthError("Token is missing session claims")

def csrf_matches(session_token: str, request_token: Optional[str]) -> bool:
    """Compare the CSRF token of a request with the session's in constant time."""
    if not session_token or not request_token:
        return False
    return secrets.compare_digest(session_token.encode(), request_token.encode())

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Return 401 automatically if token is missing
    description="JWT Bearer token required"
)

# Missing credentials are answered by require_admin itself
admin_scheme = HTTPBearer(auto_error=False)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: Database = Depends(get_database)
) -> SessionUser:
    """FastAPI dependency for getting the authenticated user.

    Args:
        credentials: Bearer token credentials
        db: Database to load the user from

    Returns:
        The authenticated user and the session's CSRF token

    Raises:
        HTTPException: If authentication fails or the user no longer exists
    """
    try:
        claims = decode_session_token(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

    try:
        async with db.connection() as store:
            user = await store.get_user(claims['user_id'])
    except DatabaseError as e:
        logger.error(f"Error loading session user: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error"
        )

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return SessionUser(
        id=user['id'],
        account_name=user['account_name'],
        address=user['address'],
        csrf_token=claims['csrf_token']
    )

async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_scheme)
) -> None:
    """FastAPI dependency admitting only callers holding the admin token.

    Raises:
        HTTPException: 401 without a bearer token or with the wrong one, 403
            when no admin token is configured
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )
    if not ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Gateway configuration is disabled"
        )
    if not secrets.compare_digest(credentials.credentials.encode(), ADMIN_TOKEN.encode()):
        logger.warning("Rejected gateway configuration request with a wrong admin token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token required",
            headers={"WWW-Authenticate": "Bearer"}
        )

# Export public interface
__all__ = [
    'get_current_user',
    'require_admin',
    'issue_session_token',
    'decode_session_token',
    'csrf_matches',
    'SessionUser',
    'AuthError',
    'SessionExpiredError'
]
