"""Fast-fail configuration guard for the migration CLI.

Exit code 78 is used for configuration errors.
"""

from __future__ import annotations
import sys
from typing import Mapping

from wallet_migration.config import MissingMasterKeyError, master_key_from_env

CONFIG_ERROR_RC = 78


def require_master_key_or_exit(environ: Mapping[str, str] | None = None) -> str:
    try:
        return master_key_from_env(environ)
    except MissingMasterKeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(CONFIG_ERROR_RC)


__all__ = ["CONFIG_ERROR_RC", "require_master_key_or_exit"]
