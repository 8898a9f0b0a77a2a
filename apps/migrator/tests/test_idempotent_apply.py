"""Applying the artifact any number of times converges on the same rows."""

import pytest
from sqlalchemy import text

from wallet_migration.repositories.destination_store import DestinationUnavailableError
from wallet_migration.services.statements import (
    MigrationStatement,
    UserRow,
    WalletRow,
    render_artifact,
    write_artifact,
)

from tests.factories.destination import count_rows, insert_dest_user, insert_dest_wallet

pytestmark = pytest.mark.migration


def _stmt(n: int, email: str | None = None, address: str | None = None) -> MigrationStatement:
    return MigrationStatement(
        legacy_user_id=f"pb-{n}",
        user=UserRow(f"user-{n}", email or f"u{n}@example.com", f"User {n}", 1000 + n, None, "c", "u"),
        wallet=WalletRow(f"wallet-{n}", address or f"addr-{n}", f"ENC{n}", f"SALT{n}", "c", "u"),
    )


def _artifact(tmp_path, statements, name="migration.sql"):
    return write_artifact(tmp_path / name, render_artifact(statements))


def test_apply_twice_is_a_noop_the_second_time(tmp_path, dest_store):
    path = _artifact(tmp_path, [_stmt(1), _stmt(2), _stmt(3)])
    dest_store.apply_statements(path)
    first = (count_rows(dest_store, "users"), count_rows(dest_store, "wallets"))
    dest_store.apply_statements(path)
    assert (count_rows(dest_store, "users"), count_rows(dest_store, "wallets")) == first == (3, 3)


def test_reapply_after_partial_apply(tmp_path, dest_store):
    all_three = [_stmt(1), _stmt(2), _stmt(3)]
    dest_store.apply_statements(_artifact(tmp_path, all_three[:1], "partial.sql"))
    dest_store.apply_statements(_artifact(tmp_path, all_three, "full.sql"))
    assert count_rows(dest_store, "users") == 3
    assert count_rows(dest_store, "wallets") == 3


def test_rerun_with_fresh_ids_does_not_duplicate(tmp_path, dest_store):
    # a second generation run mints new ids; the guards key on email/address, not ids
    dest_store.apply_statements(_artifact(tmp_path, [_stmt(1)], "run1.sql"))
    again = MigrationStatement(
        legacy_user_id="pb-1",
        user=UserRow("user-1-b", "u1@example.com", "User 1", None, None, "c", "u"),
        wallet=WalletRow("wallet-1-b", "addr-1", "ENC1b", "SALT1b", "c", "u"),
    )
    dest_store.apply_statements(_artifact(tmp_path, [again], "run2.sql"))
    assert count_rows(dest_store, "users") == 1
    assert count_rows(dest_store, "wallets") == 1


def test_existing_user_gets_wallet_linked_by_email(tmp_path, dest_store):
    insert_dest_user(dest_store, "existing-id", "u1@example.com")
    dest_store.apply_statements(_artifact(tmp_path, [_stmt(1)]))
    with dest_store.engine.connect() as conn:
        owner = conn.execute(text("SELECT user_id FROM wallets WHERE address = 'addr-1'")).scalar_one()
        name = conn.execute(text("SELECT name FROM users WHERE email = 'u1@example.com'")).scalar_one()
    assert owner == "existing-id"
    assert name == "existing"  # existing row untouched
    assert count_rows(dest_store, "users") == 1


def test_existing_user_with_wallet_keeps_it(tmp_path, dest_store):
    insert_dest_user(dest_store, "existing-id", "u1@example.com")
    insert_dest_wallet(dest_store, "existing-id", "addr-prod")
    dest_store.apply_statements(_artifact(tmp_path, [_stmt(1)]))
    with dest_store.engine.connect() as conn:
        addresses = conn.execute(text("SELECT address FROM wallets")).scalars().all()
    assert addresses == ["addr-prod"]


def test_address_already_used_skips_wallet_but_keeps_user(tmp_path, dest_store):
    insert_dest_user(dest_store, "other", "other@example.com")
    insert_dest_wallet(dest_store, "other", "addr-1")
    dest_store.apply_statements(_artifact(tmp_path, [_stmt(1)]))
    assert count_rows(dest_store, "users") == 2
    assert count_rows(dest_store, "wallets") == 1


def test_summary_counts(tmp_path, dest_store):
    dest_store.apply_statements(_artifact(tmp_path, [_stmt(1), _stmt(2)]))
    insert_dest_user(dest_store, "bare", "bare@example.com")
    s = dest_store.summary()
    assert (s.total_users, s.with_wallet, s.with_github, s.with_google) == (3, 2, 2, 0)


@pytest.mark.parametrize(
    "content",
    [
        b"INSERT INTO users (id, email) VALUES ('x', 'unterminated@example.com\n",
        b"INSERT INTO users (id, email) VALUES ('x', '\xff\xfe');\n",
    ],
)
def test_unreadable_artifact_is_unavailable_and_applies_nothing(tmp_path, dest_store, content):
    path = tmp_path / "broken.sql"
    path.write_bytes(content)
    with pytest.raises(DestinationUnavailableError):
        dest_store.apply_statements(path)
    assert count_rows(dest_store, "users") == 0
