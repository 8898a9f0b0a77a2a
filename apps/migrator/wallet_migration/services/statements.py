"""Guarded SQL statement generation for the D1 batch-apply artifact.

Every statement is an ``INSERT ... SELECT ... WHERE NOT EXISTS`` so the
artifact can be applied any number of times, including after a partial
failure:

- users:   skipped when a user with the same email exists
- wallets: skipped when the (resolved) user already has a wallet, or when
           the address is already used by any wallet
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from wallet_migration.utils.time import utc_iso


@dataclass(frozen=True)
class UserRow:
    id: str
    email: str
    name: Optional[str]
    github_id: Optional[int]
    google_id: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


@dataclass(frozen=True)
class WalletRow:
    id: str
    address: str
    encrypted_jwk: str  # base64(iv || ciphertext+tag); plaintext JWKs never reach this type
    salt: str
    created_at: Optional[str]
    updated_at: Optional[str]


@dataclass(frozen=True)
class MigrationStatement:
    legacy_user_id: str
    user: UserRow
    wallet: WalletRow
    warnings: tuple[str, ...] = ()

    def user_sql(self) -> str:
        return user_insert_sql(self.user)

    def wallet_sql(self) -> str:
        return wallet_insert_sql(self.wallet, self.user.email)


def sql_literal(value: object) -> str:
    """Render a value as a SQLite literal. ``None`` and ``""`` both become NULL."""
    if value is None or value == "":
        return "NULL"
    if isinstance(value, bool):
        raise TypeError("booleans have no column in this schema")
    if isinstance(value, int):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def _comment(text: str) -> str:
    # a newline inside a comment would end it and let the rest run as SQL
    return "-- " + " ".join(str(text).splitlines())


def user_insert_sql(user: UserRow) -> str:
    email = sql_literal(user.email)
    return (
        "INSERT INTO users (id, email, name, avatar_url, github_id, github_username, "
        "github_access_token, google_id, google_access_token, created_at, updated_at)"
        f" SELECT {sql_literal(user.id)}, {email}, {sql_literal(user.name)}, NULL,"
        f" {sql_literal(user.github_id)}, NULL, NULL,"
        f" {sql_literal(user.google_id)}, NULL,"
        f" {sql_literal(user.created_at)}, {sql_literal(user.updated_at)}"
        f" WHERE NOT EXISTS (SELECT 1 FROM users WHERE email = {email});"
    )


def wallet_insert_sql(wallet: WalletRow, email: str) -> str:
    # the owning user may be one that already existed, so resolve it by email
    owner = f"(SELECT id FROM users WHERE email = {sql_literal(email)})"
    address = sql_literal(wallet.address)
    return (
        "INSERT INTO wallets (id, user_id, address, encrypted_jwk, salt, created_at, updated_at)"
        f" SELECT {sql_literal(wallet.id)}, {owner},"
        f" {address}, {sql_literal(wallet.encrypted_jwk)}, {sql_literal(wallet.salt)},"
        f" {sql_literal(wallet.created_at)}, {sql_literal(wallet.updated_at)}"
        f" WHERE NOT EXISTS (SELECT 1 FROM wallets WHERE user_id = {owner})"
        f" AND NOT EXISTS (SELECT 1 FROM wallets WHERE address = {address});"
    )


def render_artifact(
    statements: Sequence[MigrationStatement],
    *,
    rows_read: int | None = None,
    generated_at: datetime | None = None,
) -> str:
    lines = [
        "-- Legacy PocketBase user migration",
        f"-- Generated: {utc_iso(generated_at)}",
        f"-- Users to migrate: {len(statements)}",
    ]
    if rows_read is not None:
        lines.append(f"-- Legacy rows read: {rows_read}")
    lines.append("")
    for stmt in statements:
        lines.append(_comment(f"User: {stmt.user.email} (legacy ID: {stmt.legacy_user_id})"))
        lines.extend(_comment(f"WARNING: {w}") for w in stmt.warnings)
        lines.append(stmt.user_sql())
        lines.append(stmt.wallet_sql())
        lines.append("")
    return "\n".join(lines)


def write_artifact(path: str | Path, content: str) -> Path:
    """Write the artifact in one shot (tmp file + rename), never partially."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    tmp = out.with_name(out.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, out)
    return out.resolve()


def split_sql_statements(script: str) -> list[str]:
    """Split an artifact into complete statements, dropping comment lines.

    Uses SQLite's own completeness check so ``;`` or newlines inside quoted
    literals don't split a statement.
    """
    out: list[str] = []
    buf = ""
    for line in script.splitlines(keepends=True):
        if not buf and (not line.strip() or line.lstrip().startswith("--")):
            continue
        buf += line
        if sqlite3.complete_statement(buf):
            out.append(buf.strip())
            buf = ""
    if buf.strip():
        raise ValueError("artifact ends with an incomplete SQL statement")
    return out


__all__ = [
    "UserRow",
    "WalletRow",
    "MigrationStatement",
    "sql_literal",
    "user_insert_sql",
    "wallet_insert_sql",
    "render_artifact",
    "write_artifact",
    "split_sql_statements",
]
