# Strongbox - API Security
#
# The loopback API trusts exactly one caller: the desktop shell that started
# the backend and read the session token from its stdout. Other local
# processes can reach the port but not the token.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

SESSION_HEADER = "X-Session-Token"
TOKEN_BYTES = 32  # 256-bit token

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """Create this backend instance's session token and return it."""
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(TOKEN_BYTES)
    return _SESSION_TOKEN


def get_session_token() -> str:
    """
    Return the active session token.

    Raises:
        RuntimeError: initialize_session_token() has not run
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": SESSION_HEADER},
    )


async def verify_session_token(
    x_session_token: Optional[str] = Header(None, alias=SESSION_HEADER),
) -> str:
    """
    FastAPI dependency guarding every vault and backup route.

    Raises:
        HTTPException: 503 before the token exists, 401 when the header is
            missing or does not match
    """
    expected = _SESSION_TOKEN
    if expected is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized",
        )
    if not x_session_token:
        raise _unauthorized(f"Missing {SESSION_HEADER} header")
    if not secrets.compare_digest(x_session_token.encode(), expected.encode()):
        raise _unauthorized("Invalid session token")
    return x_session_token
