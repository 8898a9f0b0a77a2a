"""Read-only access to the legacy PocketBase store (users-port/data.db)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.engine import Engine

from wallet_migration.db import readonly_sqlite_engine

logger = logging.getLogger(__name__)

# Users holding an unencrypted wallet, joined with their OAuth provider ids,
# oldest account first.
LEGACY_ROWS_SQL = """
SELECT
  u.id          AS user_id,
  u.email       AS email,
  u.name        AS name,
  u.created     AS created,
  u.updated     AS updated,
  w.address     AS wallet_address,
  w.regular_jwk AS regular_jwk,
  w.created     AS wallet_created,
  w.updated     AS wallet_updated,
  (SELECT ea.providerId FROM _externalAuths ea
     WHERE ea.recordRef = u.id AND ea.provider = 'github'
     LIMIT 1)   AS github_id,
  (SELECT ea.providerId FROM _externalAuths ea
     WHERE ea.recordRef = u.id AND ea.provider = 'google'
     LIMIT 1)   AS google_id
FROM users u
INNER JOIN wallets w ON u.id = w.user
WHERE w.encrypted = 0
  AND w.regular_jwk IS NOT NULL
  AND w.regular_jwk != ''
ORDER BY u.created ASC
"""


class LegacyRecord(BaseModel):
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    wallet_address: Optional[str] = None
    regular_jwk: Optional[str] = None
    wallet_created: Optional[str] = None
    wallet_updated: Optional[str] = None
    github_id: Optional[str] = None
    google_id: Optional[str] = None

    model_config = {"frozen": True, "coerce_numbers_to_str": True}


class LegacyStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_path(cls, path: str | Path) -> "LegacyStore":
        return cls(readonly_sqlite_engine(path))

    def fetch_legacy_rows(self) -> list[LegacyRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(LEGACY_ROWS_SQL)).mappings().all()
        records = [LegacyRecord.model_validate(dict(r)) for r in rows]
        logger.info("Found %d users with unencrypted wallets", len(records))
        return records

    def close(self) -> None:
        self.engine.dispose()


__all__ = ["LEGACY_ROWS_SQL", "LegacyRecord", "LegacyStore"]
