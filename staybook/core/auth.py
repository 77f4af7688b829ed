"""Bearer token handling.

Identity is owned by a separate service. It issues HS256 JWTs whose ``sub``
is the user id and whose ``role`` claim is one of guest / hotel / admin.
We trust those claims once the signature and expiry check out.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from staybook.core.config import Settings
from staybook.models.user import UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# Used by the no-show sweep, which acts on nobody's behalf
SYSTEM_ACTOR = Actor(user_id=0, role=UserRole.SYSTEM)


def create_access_token(settings: Settings, user_id: int, role: UserRole) -> str:
    """Mint an access token. Production tokens come from the identity service; this is for scripts and tests."""
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": str(user_id), "role": role.value, "exp": expire, "type": "access"}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def actor_from_token(settings: Settings, token: str) -> Actor:
    """Build the Actor from an access token. Raises JWTError on anything malformed."""
    payload = decode_token(settings, token)
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    try:
        return Actor(user_id=int(payload["sub"]), role=UserRole(payload["role"]))
    except (KeyError, ValueError) as exc:
        raise JWTError("Invalid token claims") from exc
