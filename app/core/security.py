"""Bearer tokens carrying the acting user, role and tenant."""

from datetime import UTC, datetime, timedelta
from typing import Literal

import pydantic
from jose import JWTError, jwt
from pydantic import BaseModel

from app.config import settings
from app.scheduling.models import Role


class TokenClaims(BaseModel):
    """Claims the scheduling API needs from an access token."""

    sub: str
    role: Role
    tenant_id: str | None = None
    type: Literal["access"]


def create_access_token(
    subject: str,
    role: Role | str,
    tenant_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token for an actor.

    Production tokens are issued by the auth provider with the same claims;
    this is used by tooling and tests.

    Args:
        subject: User ID
        role: Tenant role of the user
        tenant_id: Tenant the user belongs to, if any
        expires_delta: Lifetime, defaults to the configured expiry

    Returns:
        Encoded JWT token
    """
    now = datetime.now(UTC)
    claims = {
        "sub": subject,
        "role": role.value if isinstance(role, Role) else role,
        "type": "access",
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
    }
    if tenant_id is not None:
        claims["tenant_id"] = tenant_id

    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims | None:
    """
    Verify a token and extract its claims.

    Returns:
        Claims, or None if the token is invalid, expired or lacks a claim
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    try:
        return TokenClaims.model_validate(payload)
    except pydantic.ValidationError:
        return None
