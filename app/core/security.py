"""Password hashing and JWT access tokens.

Passwords are stored as bcrypt hashes. Access tokens are HS256 JWTs
whose ``sub`` claim is the user id; the API only trusts that claim
after verifying the signature and expiry.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
)


def hash_password(password: str) -> str:
    """Hash a password for storage.

    Args:
        password: Plain text password.

    Returns:
        bcrypt hash with the salt embedded.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plain password against a stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT access token.

    Args:
        data: Claims to embed; must include ``sub`` (the user id).
        expires_delta: Token lifetime. Defaults to
            ``JWT_EXPIRATION_HOURS``.

    Returns:
        Encoded JWT string.
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRATION_HOURS))

    to_encode.update({"exp": expire, "iat": now})

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT access token.

    Args:
        token: Encoded JWT string.

    Returns:
        The decoded claims.

    Raises:
        UnauthorizedException: If the signature is invalid, the token
            has expired, or the ``sub`` claim is missing.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise UnauthorizedException("Invalid or expired token")

    if not payload.get("sub"):
        raise UnauthorizedException("Token is missing a subject")

    return payload
