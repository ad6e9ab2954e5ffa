from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from swarm_tickets.core.clock import Clock
from swarm_tickets.core.errors import StorageUnavailable
from swarm_tickets.storage.sql_adapter import SQLAdapter


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _configure_connection(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # The built-in lower() only folds ASCII. ILIKE compiles to lower() on
    # SQLite, so route filters fold case the same way str.lower() does.
    dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


class SqliteAdapter(SQLAdapter):
    """Embedded single-file SQL storage."""

    kind = "sqlite"

    def __init__(self, sqlite_path="./tickets.db", clock: Optional[Clock] = None):
        super().__init__(clock)
        self.db_path = Path(sqlite_path).resolve()

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    def _create_engine(self) -> Engine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # FastAPI serves sync routes from a thread pool.
            engine = create_engine(self.database_url, connect_args={"check_same_thread": False})
        except ImportError as exc:
            raise StorageUnavailable(
                "SQLite storage requires a Python build with the sqlite3 module "
                f"and SQLAlchemy installed: {exc}"
            ) from exc
        event.listen(engine, "connect", _configure_connection)
        return engine

    def _insert(self, table):
        return sqlite_insert(table)
