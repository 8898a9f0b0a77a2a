"""Gate every migration run on proof that the master key is the production key.

Two steps, always in this order and always before any legacy row is read:

1. Round-trip self-test: encrypt a fixed JWK and decrypt it again. Catches a
   broken cipher pipeline, not a wrong key.
2. Live check: decrypt one existing wallet from the destination store.
   - no wallets yet            -> skipped with a warning (fresh deployment)
   - decrypts to a full JWK    -> key confirmed
   - tag/decoding failure      -> key is wrong, hard stop (retrying can't help)
   - store unreachable         -> warning, proceed on the self-test alone

A wrong key would otherwise produce wallets nobody can ever decrypt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from wallet_migration import metrics
from wallet_migration.repositories.destination_store import (
    DestinationStore,
    DestinationUnavailableError,
)
from wallet_migration.services.crypto import WalletCryptoError, decrypt_jwk, encrypt_jwk

logger = logging.getLogger(__name__)

SELF_TEST_JWK = {"kty": "RSA", "n": "test-n", "e": "AQAB", "d": "test-d"}
# what the worker needs to sign with a decrypted wallet
LIVE_REQUIRED_FIELDS = ("kty", "n", "e", "d")


class KeyValidationError(RuntimeError):
    """Fatal: the run must stop before touching any row."""


class SelfTestError(KeyValidationError):
    pass


class KeyMismatchError(KeyValidationError):
    pass


class ValidationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    NO_ROWS = "no_rows"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ValidationResult:
    outcome: ValidationOutcome
    address: Optional[str] = None
    detail: Optional[str] = None


def self_test(master_key: str | bytes) -> None:
    logger.info("[1/2] Round-trip self-test...")
    try:
        enc = encrypt_jwk(SELF_TEST_JWK, master_key)
        decrypted = decrypt_jwk(enc.encrypted, enc.salt, master_key)
    except WalletCryptoError as e:
        metrics.key_validation_total.labels(result="self_test_failed").inc()
        raise SelfTestError(f"Round-trip self-test FAILED: {e}") from e
    if decrypted != SELF_TEST_JWK:
        metrics.key_validation_total.labels(result="self_test_failed").inc()
        raise SelfTestError("Round-trip self-test FAILED: decrypted JWK does not match original")
    logger.info("Round-trip self-test passed.")


def live_validate(master_key: str | bytes, store: DestinationStore) -> ValidationResult:
    logger.info("[2/2] Validating against production wallets...")
    try:
        sample = store.fetch_sample_wallet()
    except DestinationUnavailableError as e:
        detail = str(e) + (f" (stderr: {e.stderr})" if e.stderr else "")
        logger.warning("Could not query production DB: %s", detail)
        logger.warning("Skipping production validation. Proceeding with self-test only.")
        metrics.key_validation_total.labels(result="unreachable").inc()
        return ValidationResult(ValidationOutcome.UNREACHABLE, detail=detail)

    if sample is None:
        logger.warning("No wallets found in production DB. Skipping production validation.")
        metrics.key_validation_total.labels(result="no_rows").inc()
        return ValidationResult(ValidationOutcome.NO_ROWS)

    try:
        jwk = decrypt_jwk(sample.encrypted_jwk, sample.salt, master_key)
    except WalletCryptoError as e:
        # malformed ciphertext counts as a mismatch too
        metrics.key_validation_total.labels(result="mismatch").inc()
        raise KeyMismatchError(
            "Encryption key does NOT match production: cannot decrypt existing "
            f"wallet {sample.address} ({e.__class__.__name__})"
        ) from e

    missing = [f for f in LIVE_REQUIRED_FIELDS if not jwk.get(f)]
    if missing:
        metrics.key_validation_total.labels(result="mismatch").inc()
        raise KeyMismatchError(
            f"Decrypted production JWK for {sample.address} is missing required fields: "
            + ", ".join(missing)
        )

    logger.info("Successfully decrypted production wallet (address: %s).", sample.address)
    logger.info("Encryption key is valid.")
    metrics.key_validation_total.labels(result="confirmed").inc()
    return ValidationResult(ValidationOutcome.CONFIRMED, address=sample.address)


def validate_encryption_key(master_key: str | bytes, store: DestinationStore) -> ValidationResult:
    logger.info("Validating encryption key...")
    self_test(master_key)
    return live_validate(master_key, store)


__all__ = [
    "SELF_TEST_JWK",
    "LIVE_REQUIRED_FIELDS",
    "KeyValidationError",
    "SelfTestError",
    "KeyMismatchError",
    "ValidationOutcome",
    "ValidationResult",
    "self_test",
    "live_validate",
    "validate_encryption_key",
]
