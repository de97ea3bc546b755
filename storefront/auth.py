# storefront/auth.py
"""Password hashing and session tokens.

JWT settings are read from the environment on every call so a process can
rotate ``JWT_SECRET`` or shorten ``JWT_EXPIRE_MIN`` without re-importing.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

pwd = CryptContext(schemes=["argon2"], deprecated="auto")

DEFAULT_TOKEN_MINUTES = 60


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    username: Optional[str]
    expires_at: datetime


def _signing_key() -> tuple[str, str]:
    return os.getenv("JWT_SECRET", "dev-secret-change-me"), os.getenv("JWT_ALG", "HS256")


def token_lifetime() -> timedelta:
    raw = os.getenv("JWT_EXPIRE_MIN", str(DEFAULT_TOKEN_MINUTES))
    try:
        minutes = int(raw)
    except ValueError:
        minutes = DEFAULT_TOKEN_MINUTES
    return timedelta(minutes=minutes)


def hash_password(plain: str) -> str:
    return pwd.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    # a corrupt stored hash is a failed login, not a server error
    try:
        return pwd.verify(plain, hashed)
    except (UnknownHashError, ValueError, TypeError):
        return False


def create_token(user_id: int, username: str) -> str:
    secret, alg = _signing_key()
    claims = {
        "sub": str(user_id),
        "username": username,
        "exp": datetime.now(timezone.utc) + token_lifetime(),
    }
    return jwt.encode(claims, secret, algorithm=alg)


def decode_claims(token: str) -> Optional[TokenClaims]:
    """Verify signature and expiry. Returns None for any unusable token."""
    secret, alg = _signing_key()
    try:
        data = jwt.decode(token, secret, algorithms=[alg])
        return TokenClaims(
            user_id=int(data["sub"]),
            username=data.get("username"),
            expires_at=datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        return None


def decode_token(token: str) -> Optional[int]:
    claims = decode_claims(token)
    return claims.user_id if claims else None
