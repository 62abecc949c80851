"""
Security utilities: JWT verification and internal-token comparison.

Identity is owned by an external provider. It issues HS256 JWTs signed
with the shared SECRET_KEY whose "sub" claim is the account id; the ledger
only verifies them and never stores credentials.

The billing collaborator is a trusted service. It authenticates with a
shared INTERNAL_TOKEN sent in the X-Internal-Token header.
"""

import hmac
from datetime import datetime, timedelta, timezone

from jose import jwt

from credit_ledger.config import settings

# Lifetime used when we mint tokens ourselves (tests and the demo seed script)
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=30)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT the way the identity provider does.

    Args:
        data: Claims to encode (must include "sub", the account id).
        expires_delta: Optional lifetime; defaults to 30 minutes.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_LIFETIME)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.

    Returns:
        The decoded payload dictionary (contains "sub", "exp", etc.).
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def internal_token_matches(candidate: str | None) -> bool:
    """Constant-time comparison against settings.INTERNAL_TOKEN."""
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), settings.INTERNAL_TOKEN.encode())
