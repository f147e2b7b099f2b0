"""API key hashing and credential protection for the tenant registry.

API keys are stored as ``iterations.salt.hash`` (salt and hash base64),
derived with PBKDF2-HMAC-SHA256. Database passwords are stored encrypted
and only decrypted on demand.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from typing import Protocol

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from src.tenancy.config import get_settings
from src.tenancy.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# ── API Key Hashing ───────────────────────────────────────────────────────────

SALT_SIZE = 16
HASH_SIZE = 32
MIN_ITERATIONS = 100_000


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(algorithm=hashes.SHA256(), length=HASH_SIZE, salt=salt, iterations=iterations)


def _parse(stored_hash: str) -> tuple[int, bytes, bytes] | None:
    parts = stored_hash.split(".")
    if len(parts) != 3:
        return None
    try:
        iterations = int(parts[0])
        salt = base64.b64decode(parts[1], validate=True)
        derived = base64.b64decode(parts[2], validate=True)
    except (ValueError, binascii.Error):
        return None
    if iterations <= 0 or not salt or not derived:
        return None
    return iterations, salt, derived


class ApiKeyHasher:
    """Salted, iterated hashing of tenant API keys."""

    def __init__(self, iterations: int = MIN_ITERATIONS) -> None:
        if iterations < MIN_ITERATIONS:
            raise ConfigurationError(f"API key hashing needs at least {MIN_ITERATIONS} iterations")
        self.iterations = iterations

    def hash(self, api_key: str) -> str:
        """Hash ``api_key`` with a fresh random salt.

        Raises ValueError for an empty or whitespace-only key.
        """
        if not api_key or not api_key.strip():
            raise ValueError("API key cannot be null or empty")
        salt = secrets.token_bytes(SALT_SIZE)
        derived = _kdf(salt, self.iterations).derive(api_key.encode("utf-8"))
        return (
            f"{self.iterations}."
            f"{base64.b64encode(salt).decode('ascii')}."
            f"{base64.b64encode(derived).decode('ascii')}"
        )

    def verify(self, api_key: str, stored_hash: str) -> bool:
        """Recompute with the stored salt/iterations; constant-time compare."""
        if not api_key or not stored_hash:
            return False
        parsed = _parse(stored_hash)
        if parsed is None:
            return False
        iterations, salt, derived = parsed
        try:
            _kdf(salt, iterations).verify(api_key.encode("utf-8"), derived)
        except InvalidKey:
            return False
        return True

    def needs_rehash(self, stored_hash: str | None) -> bool:
        """True when the hash is unusable or weaker than the current minimum."""
        if not stored_hash:
            return True
        parsed = _parse(stored_hash)
        if parsed is None:
            return True
        return parsed[0] < MIN_ITERATIONS


def generate_api_key() -> str:
    """Random URL-safe API key to hand out once and store only hashed."""
    return secrets.token_urlsafe(32)


# ── Credential Protection ─────────────────────────────────────────────────────


class PasswordProtector(Protocol):
    """Reversible protection for stored database credentials."""

    def protect(self, plaintext: str) -> str: ...

    def unprotect(self, ciphertext: str) -> str: ...


class FernetPasswordProtector:
    """Fernet (AES-128-CBC + HMAC) encryption of stored credentials."""

    def __init__(self, key: str | bytes | None = None) -> None:
        if key is None:
            key = get_settings().CREDENTIAL_ENCRYPTION_KEY
        if not key:
            raise ConfigurationError("CREDENTIAL_ENCRYPTION_KEY is required to store credentials")
        try:
            self._fernet = Fernet(key)
        except (ValueError, binascii.Error) as exc:
            raise ConfigurationError("CREDENTIAL_ENCRYPTION_KEY is not a valid Fernet key") from exc

    def protect(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def unprotect(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.error("Stored credential could not be decrypted")
            raise
