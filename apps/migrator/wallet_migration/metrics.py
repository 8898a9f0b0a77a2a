"""Prometheus counters for a migration run.

Kept in a private registry so repeated runs in one process (tests) don't
collide with the default global registry.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, write_to_textfile

REGISTRY = CollectorRegistry()

rows_total = Counter(
    "wallet_migration_rows_total",
    "Legacy rows processed by outcome",
    labelnames=("outcome",),  # migrated | skipped
    registry=REGISTRY,
)
skips_total = Counter(
    "wallet_migration_skips_total",
    "Legacy rows skipped, by reason",
    labelnames=("reason",),
    registry=REGISTRY,
)
key_validation_total = Counter(
    "wallet_migration_key_validation_total",
    "Encryption key validation results",
    labelnames=("result",),  # confirmed | no_rows | unreachable | mismatch | self_test_failed
    registry=REGISTRY,
)


def write_textfile(path: str) -> None:
    write_to_textfile(path, REGISTRY)


__all__ = ["REGISTRY", "rows_total", "skips_total", "key_validation_total", "write_textfile"]
