"""Destination store (the worker's D1 database) access.

Two implementations share one small contract:
- ``WranglerD1Store`` shells out to ``wrangler d1 execute`` (remote or local D1).
- ``SqlDestinationStore`` talks SQLAlchemy to a reachable database (a local
  SQLite copy of D1, tests).

Any I/O failure surfaces as ``DestinationUnavailableError`` so callers can
degrade instead of aborting.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from wallet_migration.db import Base, make_engine
from wallet_migration.services.statements import split_sql_statements

logger = logging.getLogger(__name__)

SAMPLE_WALLET_SQL = "SELECT encrypted_jwk, salt, address FROM wallets LIMIT 1"
SUMMARY_SQL = (
    "SELECT COUNT(*) AS total_users, COUNT(w.id) AS with_wallet, "
    "COUNT(u.github_id) AS with_github, COUNT(u.google_id) AS with_google "
    "FROM users u LEFT JOIN wallets w ON w.user_id = u.id"
)


class DestinationUnavailableError(RuntimeError):
    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


class SampleWallet(BaseModel):
    encrypted_jwk: Optional[str] = None
    salt: Optional[str] = None
    address: Optional[str] = None


class DestinationSummary(BaseModel):
    total_users: int = 0
    with_wallet: int = 0
    with_github: int = 0
    with_google: int = 0


_M = TypeVar("_M", bound=BaseModel)


def _validate_row(model: type[_M], row: dict[str, Any]) -> _M:
    try:
        return model.model_validate(row)
    except ValidationError as e:
        raise DestinationUnavailableError(f"unexpected {model.__name__} row from destination: {e}") from e


class DestinationStore(Protocol):
    def fetch_sample_wallet(self) -> SampleWallet | None: ...

    def apply_statements(self, artifact: Path) -> None: ...

    def summary(self) -> DestinationSummary: ...


class WranglerD1Store:
    def __init__(
        self,
        database: str,
        worker_dir: str | Path = ".",
        *,
        remote: bool = True,
        wrangler_cmd: str = "npx wrangler",
        timeout: float | None = None,
    ):
        self.database = database
        self.worker_dir = Path(worker_dir)
        self.remote = remote
        self.wrangler_cmd = wrangler_cmd
        self.timeout = timeout

    def _argv(self, *extra: str) -> list[str]:
        return [
            *shlex.split(self.wrangler_cmd),
            "d1",
            "execute",
            self.database,
            "--remote" if self.remote else "--local",
            *extra,
        ]

    def _run(self, argv: list[str]) -> subprocess.CompletedProcess:
        try:
            proc = subprocess.run(
                argv,
                cwd=str(self.worker_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DestinationUnavailableError(f"could not run wrangler: {e}") from e
        if proc.returncode != 0:
            lines = (proc.stderr or "").strip().splitlines()
            raise DestinationUnavailableError(
                f"wrangler exited with code {proc.returncode}",
                stderr=lines[-1] if lines else None,
            )
        return proc

    def query(self, sql: str) -> list[dict[str, Any]]:
        proc = self._run(self._argv("--json", "--command", sql))
        try:
            results = json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise DestinationUnavailableError("wrangler returned non-JSON output") from e
        # wrangler --json outputs a JSON array of result sets
        if not isinstance(results, list):
            raise DestinationUnavailableError("unexpected wrangler output: not a list of result sets")
        if not results:
            return []
        first = results[0]
        rows = first.get("results", []) if isinstance(first, dict) else None
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise DestinationUnavailableError("unexpected wrangler output: malformed result set")
        return rows

    def fetch_sample_wallet(self) -> SampleWallet | None:
        rows = self.query(SAMPLE_WALLET_SQL)
        return _validate_row(SampleWallet, rows[0]) if rows else None

    def apply_statements(self, artifact: Path) -> None:
        path = Path(artifact).resolve()
        self._run(self._argv(f"--file={path}"))
        logger.info("applied %s to D1 database %s (%s)", path, self.database,
                    "remote" if self.remote else "local")

    def summary(self) -> DestinationSummary:
        rows = self.query(SUMMARY_SQL)
        return _validate_row(DestinationSummary, rows[0]) if rows else DestinationSummary()


class SqlDestinationStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "SqlDestinationStore":
        return cls(make_engine(url))

    def create_schema(self) -> None:
        import wallet_migration.orm_models  # noqa: F401  (register tables)

        Base.metadata.create_all(self.engine)

    def fetch_sample_wallet(self) -> SampleWallet | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(SAMPLE_WALLET_SQL)).mappings().first()
        except SQLAlchemyError as e:
            raise DestinationUnavailableError(f"destination query failed: {e}") from e
        return _validate_row(SampleWallet, dict(row)) if row else None

    def apply_statements(self, artifact: Path) -> None:
        try:
            statements = split_sql_statements(Path(artifact).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:  # UnicodeDecodeError is a ValueError
            raise DestinationUnavailableError(f"cannot read artifact {artifact}: {e}") from e
        try:
            with self.engine.begin() as conn:
                for stmt in statements:
                    conn.exec_driver_sql(stmt)
        except SQLAlchemyError as e:
            raise DestinationUnavailableError(f"applying {artifact} failed: {e}") from e
        logger.info("applied %d statements from %s", len(statements), artifact)

    def summary(self) -> DestinationSummary:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(SUMMARY_SQL)).mappings().first()
        except SQLAlchemyError as e:
            raise DestinationUnavailableError(f"destination query failed: {e}") from e
        return _validate_row(DestinationSummary, dict(row)) if row else DestinationSummary()


__all__ = [
    "SAMPLE_WALLET_SQL",
    "DestinationUnavailableError",
    "SampleWallet",
    "DestinationSummary",
    "DestinationStore",
    "WranglerD1Store",
    "SqlDestinationStore",
]
