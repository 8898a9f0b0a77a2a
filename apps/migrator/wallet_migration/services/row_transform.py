"""Legacy (user, wallet) row -> guarded migration statement.

Failures here are row-local: a bad record becomes a ``Skipped`` outcome and
the batch carries on.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from wallet_migration.repositories.legacy_store import LegacyRecord
from wallet_migration.services.crypto import canonical_json, encrypt_jwk
from wallet_migration.services.statements import MigrationStatement, UserRow, WalletRow

logger = logging.getLogger(__name__)

# RSA modulus, public exponent, private exponent
REQUIRED_JWK_FIELDS = ("n", "e", "d")
_DIGITS = re.compile(r"[0-9]+")


class SkipReason(str, Enum):
    INVALID_JSON = "invalid_json"
    INCOMPLETE_KEY = "incomplete_key"
    MISSING_EMAIL = "missing_email"
    MISSING_ADDRESS = "missing_address"
    INVALID_PROVIDER_ID = "invalid_provider_id"


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason
    legacy_user_id: str
    email: Optional[str]
    detail: str


def _new_id() -> str:
    return str(uuid.uuid4())


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_jwk(payload: Optional[str]) -> dict[str, Any]:
    """Parse a legacy key payload; raises ValueError when it isn't a JSON object.

    Only payloads the worker can read back are accepted: no NaN/Infinity
    constants, and nothing that fails to encode as UTF-8 (lone surrogates).
    """
    jwk = json.loads(payload or "", parse_constant=_reject_constant)
    if not isinstance(jwk, dict):
        raise ValueError("JWK payload is not a JSON object")
    canonical_json(jwk)  # ValueError on lone surrogates or floats that overflowed to inf
    return jwk


def missing_jwk_fields(jwk: dict[str, Any], required=REQUIRED_JWK_FIELDS) -> list[str]:
    return [f for f in required if not jwk.get(f)]


def normalize_github_id(value: Optional[str]) -> Optional[int]:
    """GitHub ids are INTEGER in D1; absent/blank -> None, junk -> ValueError."""
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    if not _DIGITS.fullmatch(raw):
        raise ValueError(f"not a base-10 integer: {raw!r}")
    return int(raw)


def normalize_google_id(value: Optional[str]) -> Optional[str]:
    # stays TEXT; empty string is stored as NULL
    return value if value else None


def transform(
    record: LegacyRecord,
    master_key: str | bytes,
    *,
    new_id: Callable[[], str] = _new_id,
) -> MigrationStatement | Skipped:
    def skip(reason: SkipReason, detail: str) -> Skipped:
        logger.warning("Skipping user %s: %s", record.email, detail)
        return Skipped(reason, record.user_id, record.email, detail)

    try:
        jwk = parse_jwk(record.regular_jwk)
    except ValueError:  # JSONDecodeError is a ValueError
        return skip(SkipReason.INVALID_JSON, "invalid JWK JSON")

    missing = missing_jwk_fields(jwk)
    if missing:
        return skip(
            SkipReason.INCOMPLETE_KEY,
            f"JWK missing required fields ({', '.join(missing)})",
        )
    if not record.email:
        return skip(SkipReason.MISSING_EMAIL, "no email to key the user row on")
    if not record.wallet_address:
        return skip(SkipReason.MISSING_ADDRESS, "wallet has no address")
    try:
        github_id = normalize_github_id(record.github_id)
    except ValueError:
        return skip(SkipReason.INVALID_PROVIDER_ID, f"non-numeric github id {record.github_id!r}")

    encrypted = encrypt_jwk(jwk, master_key)

    user = UserRow(
        id=new_id(),
        email=record.email,
        name=record.name,
        github_id=github_id,
        google_id=normalize_google_id(record.google_id),
        created_at=record.created,
        updated_at=record.updated,
    )
    wallet = WalletRow(
        id=new_id(),
        address=record.wallet_address,
        encrypted_jwk=encrypted.encrypted,
        salt=encrypted.salt,
        created_at=record.wallet_created,
        updated_at=record.wallet_updated,
    )
    return MigrationStatement(legacy_user_id=record.user_id, user=user, wallet=wallet)


__all__ = [
    "REQUIRED_JWK_FIELDS",
    "SkipReason",
    "Skipped",
    "parse_jwk",
    "missing_jwk_fields",
    "normalize_github_id",
    "normalize_google_id",
    "transform",
]
