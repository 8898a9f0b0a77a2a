import json
import logging
import sys

import pytest

from wallet_migration.config import MissingMasterKeyError, Settings, master_key_from_env
from wallet_migration.logging import JsonFormatter, SecretRedactionFilter
from wallet_migration.startup_guard import CONFIG_ERROR_RC, require_master_key_or_exit
from wallet_migration.utils.time import utc_iso


def _record(msg, *args, **extra):
    rec = logging.LogRecord("wallet_migration.test", logging.WARNING, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_formatter_fields_and_extras():
    line = JsonFormatter().format(_record("Skipping user %s", "a@example.com", reason="invalid_json"))
    d = json.loads(line)
    assert d["lvl"] == "WARNING"
    assert d["msg"] == "Skipping user a@example.com"
    assert d["logger"] == "wallet_migration.test"
    assert d["reason"] == "invalid_json"


def test_redaction_masks_secret_in_args():
    rec = _record("key is %s", "s3cr3t-master")
    SecretRedactionFilter("s3cr3t-master").filter(rec)
    assert rec.getMessage() == "key is ***"


def test_redaction_leaves_other_messages_alone():
    rec = _record("nothing to see %d", 3)
    assert SecretRedactionFilter("s3cr3t").filter(rec) is True
    assert rec.getMessage() == "nothing to see 3"


def test_redaction_covers_exception_text_and_extras():
    try:
        raise RuntimeError("decrypt failed for key s3cr3t-master")
    except RuntimeError:
        rec = logging.LogRecord(
            "wallet_migration.test", logging.ERROR, __file__, 1, "boom", (), sys.exc_info()
        )
    rec.context = "key=s3cr3t-master"
    rec.attempt = 2

    SecretRedactionFilter("s3cr3t-master").filter(rec)
    line = JsonFormatter().format(rec)

    assert "s3cr3t-master" not in line
    d = json.loads(line)
    assert d["context"] == "key=***"
    assert d["attempt"] == 2
    assert "decrypt failed for key ***" in d["exc"]
    assert "s3cr3t-master" not in logging.Formatter().format(rec)


def test_master_key_from_env():
    assert master_key_from_env({"WALLET_ENCRYPTION_KEY": "k"}) == "k"
    with pytest.raises(MissingMasterKeyError):
        master_key_from_env({})
    with pytest.raises(MissingMasterKeyError):
        master_key_from_env({"WALLET_ENCRYPTION_KEY": "  "})


def test_startup_guard_exits_with_config_error(capsys):
    with pytest.raises(SystemExit) as ei:
        require_master_key_or_exit({})
    assert ei.value.code == CONFIG_ERROR_RC == 78
    assert "WALLET_ENCRYPTION_KEY" in capsys.readouterr().err


def test_settings_ignore_master_key_in_dotenv(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("WALLET_ENCRYPTION_KEY=from-dotenv\nD1_DATABASE=staging-db\n")
    s = Settings()
    assert s.D1_DATABASE == "staging-db"
    assert not hasattr(s, "WALLET_ENCRYPTION_KEY")
    with pytest.raises(MissingMasterKeyError):
        master_key_from_env()


def test_utc_iso_millis():
    from datetime import datetime, timezone

    assert utc_iso(datetime(2025, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)) == "2025-01-02T03:04:05.678Z"
