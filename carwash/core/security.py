"""Security helpers (password hashing, verification and secrets at rest)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from functools import lru_cache

from argon2 import PasswordHasher, exceptions as argon_exc
from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from .config import get_settings

_ph = PasswordHasher()
_LEGACY_SALT = b"carwash"
_PREFIX = "argon2$"
_DEV_KEY_SEED = "carwash-pos-development-key"


class SecretDecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted with the configured key."""


def hash_password(password: str) -> str:
    """Create a modern Argon2 hash with a prefix for detection."""
    hashed = _ph.hash(password)
    return f"{_PREFIX}{hashed}"


def _legacy_hash(password: str) -> str:
    return hashlib.scrypt(password.encode(), salt=_LEGACY_SALT, n=2**14, r=8, p=1).hex()


def verify_password(password: str, stored_hash: str | None) -> bool:
    stored = stored_hash or ""
    if not stored:
        return False
    if stored.startswith(_PREFIX):
        hashed = stored[len(_PREFIX) :]
        try:
            return _ph.verify(hashed, password)
        except (argon_exc.VerifyMismatchError, argon_exc.VerificationError, argon_exc.InvalidHashError):
            return False
    legacy = _legacy_hash(password)
    return secrets.compare_digest(legacy, stored)


def _derive_key(passphrase: str) -> bytes:
    """Accept a ready Fernet key or stretch any other passphrase into one."""
    raw = passphrase.encode()
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32:
            return raw
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


@lru_cache
def _fernet(passphrase: str) -> Fernet:
    return Fernet(_derive_key(passphrase))


@lru_cache
def _warn_development_key() -> None:
    logger.warning("ENCRYPTION_KEY not set; using the development key for secrets at rest")


def _current_cipher() -> Fernet:
    settings = get_settings()
    key = settings.encryption_key.strip()
    if not key:
        if settings.is_production:
            raise RuntimeError("ENCRYPTION_KEY must be configured in production.")
        _warn_development_key()
        key = _DEV_KEY_SEED
    return _fernet(key)


def encrypt_secret(value: str) -> str:
    """Encrypt a reversible secret (DNIT token, certificate password) for storage."""
    return _current_cipher().encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    try:
        return _current_cipher().decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError) as exc:
        raise SecretDecryptionError("stored secret could not be decrypted") from exc
