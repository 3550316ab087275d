from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from webrana.core.config import settings


class TokenError(Exception):
    def __init__(self, message: str, code: str = "INVALID_TOKEN"):
        super().__init__(message)
        self.code = code


# -------------------------
# Password hashing (bcrypt)
# -------------------------
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# -------------------------
# JWT keys (HS256 or RS256)
# -------------------------
def _is_rsa() -> bool:
    return settings.JWT_ALGORITHM.upper() == "RS256"


def _pem(value: str) -> str:
    # keys set through env vars usually carry literal "\n"
    return value.replace("\\n", "\n")


def _signing_key() -> str:
    if _is_rsa():
        if not settings.JWT_PRIVATE_KEY:
            raise RuntimeError("JWT_PRIVATE_KEY is required when JWT_ALGORITHM=RS256")
        return _pem(settings.JWT_PRIVATE_KEY)
    return settings.JWT_SECRET


def _verification_key() -> str:
    if _is_rsa():
        if not settings.JWT_PUBLIC_KEY:
            raise RuntimeError("JWT_PUBLIC_KEY is required when JWT_ALGORITHM=RS256")
        return _pem(settings.JWT_PUBLIC_KEY)
    return settings.JWT_SECRET


def _algorithm() -> str:
    return "RS256" if _is_rsa() else "HS256"


# -------------------------
# JWT tokens
# -------------------------
def create_access_token(*, user_id: int, email: str, role: str, status: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "status": status,
        "type": "access",
        "iss": settings.JWT_ISSUER,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.JWT_ACCESS_MINUTES)).timestamp()),
    }
    return jwt.encode(payload, _signing_key(), algorithm=_algorithm())


def create_refresh_token(*, user_id: int) -> tuple[str, datetime]:
    """Returns the token and its expiry as naive UTC."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=settings.JWT_REFRESH_DAYS)
    payload = {
        "sub": str(user_id),
        "jti": secrets.token_hex(16),
        "type": "refresh",
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
    }
    token = jwt.encode(payload, _signing_key(), algorithm=_algorithm())
    return token, expires.replace(tzinfo=None)


def decode_token(token: str, *, expected_type: str = "access") -> dict:
    options = {"require": ["exp", "sub"]}
    kwargs = {}
    if expected_type == "access":
        kwargs["issuer"] = settings.JWT_ISSUER
    try:
        payload = jwt.decode(
            token,
            _verification_key(),
            algorithms=[_algorithm()],
            options=options,
            **kwargs,
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired", code="TOKEN_EXPIRED") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    if payload.get("type") != expected_type:
        raise TokenError("Invalid token type")
    return payload


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
