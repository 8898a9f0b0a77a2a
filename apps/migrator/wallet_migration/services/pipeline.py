"""End-to-end migration run: validate key -> read legacy rows -> transform -> write artifact."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from wallet_migration import metrics
from wallet_migration.repositories.destination_store import DestinationStore
from wallet_migration.repositories.legacy_store import LegacyStore
from wallet_migration.services.key_validator import ValidationResult, validate_encryption_key
from wallet_migration.services.row_transform import Skipped, transform
from wallet_migration.services.statements import MigrationStatement, render_artifact, write_artifact
from wallet_migration.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    read: int = 0
    migrated: int = 0
    skipped: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    address_conflicts: list[str] = field(default_factory=list)
    output_path: Optional[Path] = None
    validation: Optional[ValidationResult] = None


def run_migration(
    master_key: str | bytes,
    legacy: LegacyStore,
    destination: DestinationStore,
    output_path: str | Path,
    *,
    new_id: Optional[Callable[[], str]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> MigrationReport:
    """Run one migration. Raises ``KeyValidationError`` before any row is read
    when the key is wrong; nothing is written in that case."""
    report = MigrationReport()
    report.validation = validate_encryption_key(master_key, destination)

    records = legacy.fetch_legacy_rows()
    report.read = len(records)
    if not records:
        logger.info("Nothing to migrate.")
        return report

    kwargs = {"new_id": new_id} if new_id else {}
    statements: list[MigrationStatement] = []
    address_owner: dict[str, str] = {}
    for record in records:
        out = transform(record, master_key, **kwargs)
        if isinstance(out, Skipped):
            report.skipped += 1
            report.skip_reasons[out.reason.value] += 1
            metrics.rows_total.labels(outcome="skipped").inc()
            metrics.skips_total.labels(reason=out.reason.value).inc()
            continue

        address = out.wallet.address
        owner = address_owner.setdefault(address, record.user_id)
        if owner != record.user_id:
            # TODO: decide with the worker owners whether cross-user address reuse should fail the run
            note = (
                f"address {address} is also held by legacy user {owner}; "
                "this wallet insert will be a no-op"
            )
            logger.warning("Address collision for %s: %s", record.email, note)
            out = replace(out, warnings=out.warnings + (note,))
            report.address_conflicts.append(address)

        statements.append(out)
        report.migrated += 1
        metrics.rows_total.labels(outcome="migrated").inc()
        logger.info("Encrypted wallet for %s", record.email)

    content = render_artifact(statements, rows_read=report.read, generated_at=clock())
    report.output_path = write_artifact(output_path, content)
    return report


__all__ = ["MigrationReport", "run_migration"]
