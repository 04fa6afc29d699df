"""JWT token generation and validation utilities.

Algorithm, secret and lifetime come from settings.
Tokens carry the standard claims (exp, iat, sub) plus an ``actor_type``
claim naming the caller's role (customer, provider, admin).
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from homeserve.lib.settings import settings


def create_access_token(
    actor_id: str,
    actor_type: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token for an actor.

    Args:
        actor_id: UUID of the user (stored in 'sub' claim)
        actor_type: customer, provider or admin
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_access_token("123e4567-e89b-12d3-a456-426614174000", "customer")
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expiration_minutes)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(actor_id),
        "actor_type": actor_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_actor_from_token(token: str) -> tuple[str, str]:
    """Extract (actor_id, actor_type) from a token.

    Raises:
        jwt.InvalidTokenError: If token is invalid
        KeyError: If required claims are missing
    """
    payload = verify_token(token)
    return payload["sub"], payload["actor_type"]
