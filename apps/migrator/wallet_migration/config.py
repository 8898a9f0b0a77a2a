import os
from typing import Literal, Mapping

from pydantic_settings import BaseSettings, SettingsConfigDict

# The master key is not a Settings field; it is read from the process
# environment only, never from .env or argv.
MASTER_KEY_ENV = "WALLET_ENCRYPTION_KEY"


class MissingMasterKeyError(RuntimeError):
    pass


def master_key_from_env(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    key = env.get(MASTER_KEY_ENV) or ""
    if not key.strip():
        raise MissingMasterKeyError(
            f"{MASTER_KEY_ENV} env var is required.\n"
            f"Usage: {MASTER_KEY_ENV}=your-key wallet-migration migrate"
        )
    return key


class Settings(BaseSettings):
    LEGACY_DB_PATH: str = "users-port/data.db"
    MIGRATION_OUTPUT_PATH: str = "scripts/legacy-migration.sql"
    D1_DATABASE: str = "arlinkauth-db"
    WORKER_DIR: str = "worker"
    WRANGLER_CMD: str = "npx wrangler"
    # Direct SQLAlchemy URL for the destination (local SQLite copy); replaces wrangler when set
    DESTINATION_URL: str | None = None
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    METRICS_TEXTFILE: str | None = None
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def get_settings() -> Settings:
    return Settings()
