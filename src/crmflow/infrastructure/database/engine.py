"""Database engine setup for SQLite with WAL mode.

The DB is stored at {workspace_root}/.crmflow/crmflow.db. SQLAlchemy Core
(not ORM) is used: every service call is a short unit of work against
plain tables, with no need for an identity map.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event, insert, select
from sqlalchemy.engine import Engine

from crmflow.infrastructure.database.schema import id_counters, metadata

DATA_DIR = ".crmflow"
DB_FILENAME = "crmflow.db"

SEQUENTIAL_PREFIXES = ("RUN-",)


def create_db_engine(db_path: Path | str) -> Engine:
    """Create a SQLite engine with WAL mode and foreign keys enabled."""
    url = "sqlite://" if str(db_path) == ":memory:" else f"sqlite:///{db_path}"
    engine = create_engine(url, echo=False)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_database(workspace_root: Path) -> Engine:
    """Initialize the crmflow database at ``{workspace_root}/.crmflow/crmflow.db``.

    Creates the ``.crmflow/`` directory (plus ``plugins/`` for local
    plugins), all tables from :data:`schema.metadata`, and seeds the
    ``id_counters`` rows for sequential IDs.

    Idempotent — safe to call on an existing workspace.
    """
    data_dir = workspace_root / DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "plugins").mkdir(exist_ok=True)

    engine = create_db_engine(data_dir / DB_FILENAME)
    metadata.create_all(engine)
    seed_counters(engine)
    return engine


def seed_counters(engine: Engine) -> None:
    """Insert initial counter rows for sequential prefixes if missing."""
    with engine.begin() as conn:
        for prefix in SEQUENTIAL_PREFIXES:
            row = conn.execute(
                select(id_counters.c.type_prefix).where(id_counters.c.type_prefix == prefix)
            ).first()
            if row is None:
                conn.execute(insert(id_counters).values(type_prefix=prefix, next_value=1))
