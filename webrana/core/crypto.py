from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from webrana.core.config import settings


class DecryptionError(Exception):
    pass


def _fernet(key: str | None = None) -> Fernet:
    # any configured string works; it is stretched into a 32-byte urlsafe key
    raw = (key or settings.ENCRYPTION_KEY).encode("utf-8")
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(raw).digest()))


def encrypt_value(value: str, key: str | None = None) -> str:
    return _fernet(key).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_value(value: str, key: str | None = None) -> str:
    try:
        return _fernet(key).decrypt(value.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise DecryptionError("Stored secret cannot be decrypted with the configured key") from e
