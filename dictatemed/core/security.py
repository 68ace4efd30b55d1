"""
Bearer token helpers.

Access tokens are HS256 JWTs whose ``sub`` claim is the user id.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from dictatemed.core.errors import UnauthorizedError
from dictatemed.core.logging_config import get_logger
from dictatemed.server.core.config import settings

logger = get_logger(__name__)


def create_access_token(
    subject: str, expires_delta: Optional[timedelta] = None, extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    """Create a signed access token for ``subject``."""
    auth = settings.auth
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=auth.access_token_expire_minutes))
    to_encode: Dict[str, Any] = dict(extra_claims or {})
    to_encode.update({"sub": subject, "exp": expire})
    return jwt.encode(to_encode, auth.secret_key, algorithm=auth.algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a token and return its claims.

    Raises:
        UnauthorizedError: The token is malformed, expired or has no subject
    """
    auth = settings.auth
    try:
        payload = jwt.decode(token, auth.secret_key, algorithms=[auth.algorithm])
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise UnauthorizedError("Invalid or expired token") from e
    if not payload.get("sub"):
        raise UnauthorizedError("Token has no subject")
    return payload
