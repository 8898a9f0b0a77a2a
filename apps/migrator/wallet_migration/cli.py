import argparse
import sys
from pathlib import Path

from wallet_migration.config import get_settings
from wallet_migration.logging import configure_logging, redact_secret
from wallet_migration.metrics import write_textfile
from wallet_migration.repositories.destination_store import (
    DestinationUnavailableError,
    SqlDestinationStore,
    WranglerD1Store,
)
from wallet_migration.repositories.legacy_store import LegacyStore
from wallet_migration.services.key_validator import (
    KeyMismatchError,
    KeyValidationError,
    ValidationOutcome,
    validate_encryption_key,
)
from wallet_migration.services.pipeline import run_migration
from wallet_migration.startup_guard import CONFIG_ERROR_RC, require_master_key_or_exit

ABORT_RC = 1


def _destination(args, settings, *, remote: bool = True):
    url = args.destination_url or settings.DESTINATION_URL
    if url:
        return SqlDestinationStore.from_url(url)
    return WranglerD1Store(
        args.d1_database or settings.D1_DATABASE,
        worker_dir=args.worker_dir or settings.WORKER_DIR,
        remote=remote,
        wrangler_cmd=settings.WRANGLER_CMD,
    )


def _master_key(args) -> str:
    key = require_master_key_or_exit()
    redact_secret(args.log_handler, key)
    return key


def _abort(e: KeyValidationError) -> None:
    print("", file=sys.stderr)
    if isinstance(e, KeyMismatchError):
        print("  ERROR: Encryption key does NOT match production.", file=sys.stderr)
        print("  The provided WALLET_ENCRYPTION_KEY cannot decrypt existing production wallets.", file=sys.stderr)
    else:
        print("  ERROR: Encryption self-test failed.", file=sys.stderr)
    print(f"  {e}", file=sys.stderr)
    print("  Do not proceed. Aborting migration to prevent data corruption.\n", file=sys.stderr)
    sys.exit(ABORT_RC)


def _write_metrics(args, settings) -> None:
    path = args.metrics_textfile or settings.METRICS_TEXTFILE
    if path:
        write_textfile(path)


def cmd_migrate(args):
    settings = args.settings
    master_key = _master_key(args)
    legacy_path = args.legacy_db or settings.LEGACY_DB_PATH
    output = Path(args.output or settings.MIGRATION_OUTPUT_PATH)
    destination = _destination(args, settings, remote=True)

    print(f"Reading PocketBase database: {legacy_path}")
    try:
        legacy = LegacyStore.from_path(legacy_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(CONFIG_ERROR_RC)
    try:
        report = run_migration(master_key, legacy, destination, output)
    except KeyValidationError as e:
        _write_metrics(args, settings)
        _abort(e)
    finally:
        legacy.close()
    _write_metrics(args, settings)

    if report.output_path is None:
        print("Nothing to migrate.")
        return

    print("\nDone!")
    print(f"  Migrated: {report.migrated}")
    print(f"  Skipped:  {report.skipped}")
    for reason, n in sorted(report.skip_reasons.items()):
        print(f"    {reason}: {n}")
    if report.address_conflicts:
        print(f"  Address conflicts (flagged in artifact): {len(report.address_conflicts)}")
    print(f"  Output:   {report.output_path}")
    print("\nTo apply locally:")
    print(f"  wallet-migration apply --file {report.output_path}")
    print("\nTo apply to production:")
    print(f"  wallet-migration apply --file {report.output_path} --remote")
    print("\nDelete the artifact once applied; it contains encrypted wallet keys.")


def cmd_validate_key(args):
    master_key = _master_key(args)
    try:
        result = validate_encryption_key(master_key, _destination(args, args.settings, remote=True))
    except KeyValidationError as e:
        _write_metrics(args, args.settings)
        _abort(e)
    _write_metrics(args, args.settings)
    if result.outcome is ValidationOutcome.CONFIRMED:
        print({"key": "confirmed", "address": result.address})
    else:
        print({"key": "self-test-only", "reason": result.outcome.value})


def cmd_apply(args):
    artifact = Path(args.file)
    if not artifact.is_file():
        print(f"Error: artifact {artifact} not found", file=sys.stderr)
        sys.exit(CONFIG_ERROR_RC)
    store = _destination(args, args.settings, remote=args.remote)
    try:
        store.apply_statements(artifact)
    except DestinationUnavailableError as e:
        print(f"ERROR: apply failed: {e}" + (f" ({e.stderr})" if e.stderr else ""), file=sys.stderr)
        print("The artifact is safe to re-apply once the cause is fixed.", file=sys.stderr)
        sys.exit(ABORT_RC)
    print(f"Applied {artifact}")


def cmd_status(args):
    store = _destination(args, args.settings, remote=args.remote)
    try:
        s = store.summary()
    except DestinationUnavailableError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(ABORT_RC)
    print(s.model_dump())


def main(argv=None):
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level")
    common.add_argument("--log-format", choices=("json", "text"))
    common.add_argument("--d1-database", help="D1 database name (default: D1_DATABASE)")
    common.add_argument("--worker-dir", help="Directory wrangler runs in (default: WORKER_DIR)")
    common.add_argument("--destination-url", help="SQLAlchemy URL used instead of wrangler")
    common.add_argument("--metrics-textfile", help="Write Prometheus metrics here at exit")

    p = argparse.ArgumentParser(prog="wallet-migration")
    sub = p.add_subparsers(dest="cmd")
    m = sub.add_parser("migrate", parents=[common], help="Validate key, encrypt legacy wallets, write SQL artifact")
    m.add_argument("--legacy-db", help="PocketBase data.db (default: LEGACY_DB_PATH)")
    m.add_argument("--output", help="SQL artifact path (default: MIGRATION_OUTPUT_PATH)")
    m.set_defaults(fn=cmd_migrate)
    v = sub.add_parser("validate-key", parents=[common], help="Self-test + decrypt one production wallet")
    v.set_defaults(fn=cmd_validate_key)
    a = sub.add_parser("apply", parents=[common], help="Batch-apply an artifact (local D1 unless --remote)")
    a.add_argument("--file", required=True)
    a.add_argument("--remote", action="store_true", help="Apply to the production D1 database")
    a.set_defaults(fn=cmd_apply)
    s = sub.add_parser("status", parents=[common], help="User/wallet counts in the destination")
    s.add_argument("--remote", action="store_true")
    s.set_defaults(fn=cmd_status)

    args = p.parse_args(argv)
    if not getattr(args, "cmd", None):
        p.print_help()
        sys.exit(1)
    settings = get_settings()
    args.settings = settings
    args.log_handler = configure_logging(
        args.log_level or settings.LOG_LEVEL, args.log_format or settings.LOG_FORMAT
    )
    args.fn(args)


if __name__ == "__main__":
    main()
