import pytest

from wallet_migration.repositories.destination_store import DestinationUnavailableError, SampleWallet
from wallet_migration.services import key_validator
from wallet_migration.services.crypto import encrypt_jwk
from wallet_migration.services.key_validator import (
    KeyMismatchError,
    SelfTestError,
    ValidationOutcome,
    live_validate,
    self_test,
    validate_encryption_key,
)

from tests.factories.destination import OTHER_KEY, PROD_KEY, insert_dest_user, insert_dest_wallet
from tests.factories.legacy import make_jwk

pytestmark = pytest.mark.crypto


class FakeStore:
    def __init__(self, sample=None, error=None):
        self.sample = sample
        self.error = error
        self.calls = 0

    def fetch_sample_wallet(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.sample


def _sample(key=PROD_KEY, jwk=None, address="addr-prod"):
    enc = encrypt_jwk(jwk if jwk is not None else make_jwk(11), key)
    return SampleWallet(encrypted_jwk=enc.encrypted, salt=enc.salt, address=address)


def test_self_test_passes():
    self_test(PROD_KEY)


def test_self_test_mismatch_is_fatal(monkeypatch):
    monkeypatch.setattr(key_validator, "decrypt_jwk", lambda *a: {"kty": "RSA", "n": "other"})
    with pytest.raises(SelfTestError):
        self_test(PROD_KEY)


def test_live_validate_confirms_correct_key():
    result = live_validate(PROD_KEY, FakeStore(sample=_sample()))
    assert result.outcome is ValidationOutcome.CONFIRMED
    assert result.address == "addr-prod"


def test_live_validate_rejects_wrong_key():
    with pytest.raises(KeyMismatchError):
        live_validate(OTHER_KEY, FakeStore(sample=_sample(PROD_KEY)))


def test_live_validate_treats_malformed_ciphertext_as_mismatch():
    bad = SampleWallet(encrypted_jwk="@@not-base64@@", salt="c2FsdA==", address="addr-bad")
    with pytest.raises(KeyMismatchError):
        live_validate(PROD_KEY, FakeStore(sample=bad))


def test_live_validate_requires_complete_jwk():
    partial = {"kty": "RSA", "n": "abc", "e": "AQAB"}  # no private exponent
    with pytest.raises(KeyMismatchError, match=r"fields: d$"):
        live_validate(PROD_KEY, FakeStore(sample=_sample(jwk=partial)))


def test_live_validate_skips_when_no_wallets():
    result = live_validate(PROD_KEY, FakeStore(sample=None))
    assert result.outcome is ValidationOutcome.NO_ROWS


def test_live_validate_degrades_when_store_unreachable():
    store = FakeStore(error=DestinationUnavailableError("wrangler exited with code 1", stderr="auth required"))
    result = live_validate(PROD_KEY, store)
    assert result.outcome is ValidationOutcome.UNREACHABLE
    assert "auth required" in result.detail


def test_self_test_runs_before_live_check(monkeypatch):
    store = FakeStore(sample=_sample())

    def boom(_key):
        raise SelfTestError("broken pipeline")

    monkeypatch.setattr(key_validator, "self_test", boom)
    with pytest.raises(SelfTestError):
        validate_encryption_key(PROD_KEY, store)
    assert store.calls == 0


def test_validate_against_sql_destination(dest_store):
    insert_dest_user(dest_store, "u-1", "prod@example.com")
    insert_dest_wallet(dest_store, "u-1", "addr-live", key=PROD_KEY)
    assert validate_encryption_key(PROD_KEY, dest_store).outcome is ValidationOutcome.CONFIRMED
    with pytest.raises(KeyMismatchError):
        validate_encryption_key(OTHER_KEY, dest_store)
