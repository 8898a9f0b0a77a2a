"""Wallet JWK encryption, byte-compatible with the auth worker.

Scheme (must match the worker exactly, there is no version tag on stored rows):
- key  = PBKDF2-HMAC-SHA256(master_key, salt, 100_000 iterations, 32 bytes)
- blob = iv(12) || AES-256-GCM(key, iv, utf8(JSON.stringify(jwk)))  (tag appended)
- rows store base64(blob) in ``encrypted_jwk`` and base64(salt) in ``salt``

A fresh salt and IV are drawn for every encryption, so every call derives its
own key; derived keys are never cached.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any, Mapping, NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Compatibility contract with the decrypting service. Changing any of these
# silently yields undecryptable wallets.
PBKDF2_ITERATIONS = 100_000
SALT_LENGTH = 16
IV_LENGTH = 12
KEY_LENGTH = 32


class WalletCryptoError(Exception):
    """Base class for wallet encryption failures."""


class AuthenticationError(WalletCryptoError):
    """GCM tag did not verify: wrong master key or tampered ciphertext."""


class MalformedInputError(WalletCryptoError):
    """Ciphertext/salt could not be decoded or is structurally invalid."""


class EncryptedJwk(NamedTuple):
    encrypted: str  # base64(iv || ciphertext+tag)
    salt: str  # base64(salt)


def _as_bytes(master_key: str | bytes) -> bytes:
    return master_key.encode("utf-8") if isinstance(master_key, str) else bytes(master_key)


def _rand_bytes(n: int) -> bytes:
    return os.urandom(n)


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedInputError(f"{what} is not valid base64") from e


def canonical_json(jwk: Mapping[str, Any]) -> bytes:
    """Serialize like ``JSON.stringify``: compact, insertion order, raw UTF-8."""
    return json.dumps(jwk, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def derive_key(master_key: str | bytes, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(_as_bytes(master_key))


def aesgcm_seal(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    """Encrypt and frame as iv || ciphertext || tag."""
    return iv + AESGCM(key).encrypt(iv, plaintext, None)


def aesgcm_open(key: bytes, combined: bytes) -> bytes:
    """Inverse of :func:`aesgcm_seal`."""
    if len(combined) < IV_LENGTH:
        raise MalformedInputError(
            f"ciphertext too short: {len(combined)} bytes < {IV_LENGTH}-byte IV"
        )
    iv, ct = combined[:IV_LENGTH], combined[IV_LENGTH:]
    try:
        return AESGCM(key).decrypt(iv, ct, None)
    except InvalidTag as e:
        raise AuthenticationError("authentication tag mismatch (wrong key or corrupted data)") from e


def encrypt_jwk(jwk: Mapping[str, Any], master_key: str | bytes) -> EncryptedJwk:
    salt = _rand_bytes(SALT_LENGTH)
    iv = _rand_bytes(IV_LENGTH)
    key = derive_key(master_key, salt)
    combined = aesgcm_seal(key, iv, canonical_json(jwk))
    return EncryptedJwk(
        encrypted=base64.b64encode(combined).decode("ascii"),
        salt=base64.b64encode(salt).decode("ascii"),
    )


def decrypt_jwk(encrypted: str, salt: str, master_key: str | bytes) -> dict[str, Any]:
    combined = _b64decode(encrypted, "encrypted_jwk")
    salt_bytes = _b64decode(salt, "salt")
    plaintext = aesgcm_open(derive_key(master_key, salt_bytes), combined)
    try:
        jwk = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedInputError("decrypted payload is not JSON") from e
    if not isinstance(jwk, dict):
        raise MalformedInputError("decrypted payload is not a JSON object")
    return jwk


__all__ = [
    "PBKDF2_ITERATIONS",
    "SALT_LENGTH",
    "IV_LENGTH",
    "KEY_LENGTH",
    "WalletCryptoError",
    "AuthenticationError",
    "MalformedInputError",
    "EncryptedJwk",
    "canonical_json",
    "derive_key",
    "aesgcm_seal",
    "aesgcm_open",
    "encrypt_jwk",
    "decrypt_jwk",
]
