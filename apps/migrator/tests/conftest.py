import os
import itertools

import pytest

from wallet_migration.db import make_engine
from wallet_migration.repositories.destination_store import SqlDestinationStore
from wallet_migration.repositories.legacy_store import LegacyStore

from tests.factories.destination import PROD_KEY
from tests.factories.legacy import create_pocketbase_schema

# Stable timezone for timestamp logic
os.environ.setdefault("TZ", "UTC")


@pytest.fixture(autouse=True)
def _baseline_test_env(monkeypatch):
    """Never inherit a real master key or destination from the host shell."""
    monkeypatch.delenv("WALLET_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("DESTINATION_URL", raising=False)
    monkeypatch.delenv("METRICS_TEXTFILE", raising=False)
    yield


@pytest.fixture
def master_key() -> str:
    return PROD_KEY


@pytest.fixture
def legacy_engine():
    engine = make_engine("sqlite://")
    create_pocketbase_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def legacy_store(legacy_engine) -> LegacyStore:
    return LegacyStore(legacy_engine)


@pytest.fixture
def dest_store():
    store = SqlDestinationStore.from_url("sqlite://")
    store.create_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def seq_ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter):04d}"
