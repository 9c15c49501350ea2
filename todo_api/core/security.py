import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from todo_api.core.config import get_settings
from todo_api.core.errors import InternalError, UnauthorizedError

logger = logging.getLogger(__name__)

ph = PasswordHasher(time_cost=3, memory_cost=64 * 1024, parallelism=2)


def generate_raw_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def hash_password(plain: str) -> str:
    try:
        return ph.hash(plain)
    except HashingError:
        logger.exception("Password hashing failed")
        raise InternalError()


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return ph.verify(hashed, plain)
    except (VerificationError, InvalidHashError):
        return False


class TokenSigner:
    """Signs and verifies stateless access tokens."""

    def __init__(self, secret: str, algorithm: str, ttl: timedelta) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def sign(self, subject: str, *, now: datetime | None = None) -> str:
        now = now or datetime.now(UTC)
        payload = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.InvalidTokenError:
            raise UnauthorizedError()
        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            raise UnauthorizedError()
        return claims

    def subject_id(self, token: str) -> int:
        sub = self.verify(token)["sub"]
        try:
            return int(sub)
        except ValueError:
            raise UnauthorizedError()


@lru_cache
def get_token_signer() -> TokenSigner:
    settings = get_settings()
    return TokenSigner(
        settings.jwt_secret,
        settings.jwt_algo,
        timedelta(minutes=settings.access_min),
    )
