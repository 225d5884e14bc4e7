"""
Principal resolution from bearer tokens.

Token issuance belongs to the identity service; this module only verifies
the JWT it hands out and turns its claims into a ``Principal`` carrying the
caller's identity and role. Services receive the principal and make their
ownership decisions against it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from marketplace.core.config import get_settings
from marketplace.core.errors import AuthenticationError
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class UserRole(str, Enum):
    """Roles recognised by the fulfillment engine."""

    CUSTOMER = "customer"
    SELLER = "seller"
    COURIER = "courier"
    ADMIN = "admin"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        """
        Create UserRole from string value.

        Raises:
            ValueError: If value is not a valid role
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid user role: {value}")


@dataclass(frozen=True)
class Principal:
    """
    Verified caller identity.

    Attributes:
        user_id: Identifier of the authenticated user
        role: Role claimed in the verified token
    """

    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(
    user_id: UUID,
    role: UserRole,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Encode a signed access token.

    Used by local tooling and tests; production tokens come from the
    identity service signed with the same key.

    Args:
        user_id: Subject of the token
        role: Role claim
        expires_delta: Optional lifetime, defaults to 60 minutes

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role.value,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_principal(token: str) -> Principal:
    """
    Verify a bearer token and build the caller principal.

    Args:
        token: Encoded JWT

    Returns:
        Principal for the token subject

    Raises:
        AuthenticationError: If the token is missing, expired, malformed or
            carries an unknown role
    """
    if not token:
        raise AuthenticationError("Token cannot be empty", code="TOKEN_MISSING")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired")
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise AuthenticationError("Invalid token", code="TOKEN_INVALID") from e

    try:
        return Principal(
            user_id=UUID(payload["sub"]),
            role=UserRole.from_string(payload.get("role", "")),
        )
    except (KeyError, ValueError) as e:
        logger.warning("Token claims rejected", error=str(e))
        raise AuthenticationError("Invalid token claims", code="TOKEN_INVALID") from e
