from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import get_settings
from .errors import AuthenticationError
from .models import Role, User

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Passwords
# -----------------------------
def hash_password(password: str, rounds: Optional[int] = None) -> str:
    # bcrypt only looks at the first 72 bytes
    pw = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds or get_settings().BCRYPT_ROUNDS)
    return bcrypt.hashpw(pw, salt).decode("utf-8")


def verify_password(plain: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], stored_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


# -----------------------------
# Tokens
# -----------------------------
class TokenClaims(BaseModel):
    user_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """Issues and checks signed session tokens.

    Tokens embed ``sub`` (user id), ``role``, ``iat`` and ``exp``. Nothing is
    stored server-side, so there is no revocation: a token is good until its
    expiry. Expiry is checked against the injected clock rather than by the
    JWT library so that callers (and tests) control "now".
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=2),
        clock: Clock = utcnow,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    def issue(self, user: User) -> str:
        return self._encode(user.id, Role(user.role))

    def _encode(self, user_id: int, role: Role) -> str:
        now = self.clock()
        claims = {
            "sub": str(user_id),
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token: Optional[str]) -> TokenClaims:
        if token is None or not token.strip():
            raise AuthenticationError("Access token is missing", AuthenticationError.TOKEN_MISSING)
        try:
            payload = jwt.decode(
                token.strip(),
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise AuthenticationError("Access token is invalid", AuthenticationError.TOKEN_INVALID, {"reason": str(e)})

        try:
            user_id = int(payload["sub"])
            role = Role(payload["role"])
            iat = int(payload["iat"])
            exp = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Access token carries no usable claims", AuthenticationError.TOKEN_INVALID)

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self.clock() >= expires_at:
            raise AuthenticationError(
                "Access token has expired",
                AuthenticationError.TOKEN_EXPIRED,
                {"expiredAt": expires_at.isoformat()},
            )
        return TokenClaims(
            user_id=user_id,
            role=role,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=expires_at,
        )

    def refresh(self, token: Optional[str]) -> str:
        # only a token that still validates can be renewed
        claims = self.validate(token)
        return self._encode(claims.user_id, claims.role)

    def expiry_of(self, token: str) -> datetime:
        return self.validate(token).expires_at


def parse_authorization_header(value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise AuthenticationError("Authorization header is missing", AuthenticationError.TOKEN_MISSING)
    parts = value.split()
    if len(parts) == 1 and parts[0].lower() == "bearer":
        raise AuthenticationError("Access token is empty", AuthenticationError.TOKEN_MISSING)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError(
            "Authorization header must be 'Bearer <token>'",
            AuthenticationError.TOKEN_INVALID,
        )
    return parts[1]


def build_token_service() -> TokenService:
    s = get_settings()
    return TokenService(
        secret=s.JWT_SECRET,
        algorithm=s.JWT_ALGORITHM,
        ttl=timedelta(minutes=s.TOKEN_TTL_MINUTES),
    )


def get_token_service() -> TokenService:
    """FastAPI dependency; overridden in tests to pin the clock."""
    return build_token_service()
