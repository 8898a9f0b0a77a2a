from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """SQLAlchemy Declarative Base."""

    pass


def _connect_args(url: str):
    # For SQLite, disable same-thread check
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


def make_engine(url: str) -> Engine:
    kwargs = dict(connect_args=_connect_args(url), future=True, echo=False)
    if url.startswith("sqlite") and (url in ("sqlite://", "sqlite:///") or ":memory:" in url):
        # Share one in-memory DB across connections
        kwargs["poolclass"] = StaticPool  # type: ignore[assignment]
    return create_engine(url, **kwargs)


def readonly_sqlite_engine(path: str | Path) -> Engine:
    """Open an existing SQLite file read-only; never creates the file."""
    p = Path(path).resolve()
    if not p.is_file():
        raise FileNotFoundError(f"SQLite database file '{p}' does not exist")
    return create_engine(
        f"sqlite:///file:{p.as_posix()}?mode=ro&uri=true",
        connect_args={"check_same_thread": False},
        future=True,
    )
