"""Tests for API key hashing and credential protection."""

from __future__ import annotations

import base64

import pytest
from cryptography.fernet import Fernet, InvalidToken

from src.tenancy.core.errors import ConfigurationError
from src.tenancy.core.security import (
    HASH_SIZE,
    MIN_ITERATIONS,
    SALT_SIZE,
    ApiKeyHasher,
    FernetPasswordProtector,
    generate_api_key,
)


@pytest.fixture(scope="module")
def hasher() -> ApiKeyHasher:
    return ApiKeyHasher()


class TestApiKeyHasher:
    def test_format(self, hasher):
        iterations, salt, derived = hasher.hash("key-123").split(".")
        assert int(iterations) == MIN_ITERATIONS
        assert len(base64.b64decode(salt)) == SALT_SIZE
        assert len(base64.b64decode(derived)) == HASH_SIZE

    def test_random_salt_both_verify(self, hasher):
        first, second = hasher.hash("key-123"), hasher.hash("key-123")
        assert first != second
        assert hasher.verify("key-123", first)
        assert hasher.verify("key-123", second)

    def test_wrong_key(self, hasher):
        assert not hasher.verify("key-124", hasher.hash("key-123"))

    @pytest.mark.parametrize("key", ["", "   "])
    def test_empty_key_rejected(self, hasher, key):
        with pytest.raises(ValueError, match="cannot be null or empty"):
            hasher.hash(key)

    @pytest.mark.parametrize(
        "stored",
        [
            "",
            "not-a-hash",
            "100000.only-two",
            "abc.c2FsdA==.aGFzaA==",
            "0.c2FsdA==.aGFzaA==",
            "-5.c2FsdA==.aGFzaA==",
            "100000.!!!.aGFzaA==",
            "100000..aGFzaA==",
        ],
    )
    def test_malformed_hash_fails_closed(self, hasher, stored):
        assert hasher.verify("key-123", stored) is False

    def test_empty_key_never_verifies(self, hasher):
        assert hasher.verify("", hasher.hash("key-123")) is False

    def test_higher_iterations_still_verify(self):
        strong = ApiKeyHasher(MIN_ITERATIONS + 1)
        assert ApiKeyHasher().verify("key-123", strong.hash("key-123"))

    def test_minimum_iterations_enforced(self):
        with pytest.raises(ConfigurationError):
            ApiKeyHasher(1000)


class TestNeedsRehash:
    def test_current_hash(self, hasher):
        assert not hasher.needs_rehash(hasher.hash("key-123"))

    @pytest.mark.parametrize("stored", [None, "", "garbage", "1000.c2FsdA==.aGFzaA=="])
    def test_unusable_or_weak(self, hasher, stored):
        assert hasher.needs_rehash(stored)


def test_generated_keys_are_unique():
    assert generate_api_key() != generate_api_key()
    assert len(generate_api_key()) >= 40


class TestFernetPasswordProtector:
    def test_round_trip(self):
        protector = FernetPasswordProtector(Fernet.generate_key())
        ciphertext = protector.protect("s3cret")
        assert ciphertext != "s3cret"
        assert protector.unprotect(ciphertext) == "s3cret"

    def test_wrong_key_raises(self):
        ciphertext = FernetPasswordProtector(Fernet.generate_key()).protect("s3cret")
        with pytest.raises(InvalidToken):
            FernetPasswordProtector(Fernet.generate_key()).unprotect(ciphertext)

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="required"):
            FernetPasswordProtector("")

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError, match="not a valid Fernet key"):
            FernetPasswordProtector("too-short")
