"""Supabase (hosted Postgres) storage.

Talks to the project's Postgres database directly, so unlike the REST client
it gets real transactions: creating a ticket with its relations, actions and
comments either fully commits or leaves nothing behind, same as SQLite.
"""
import logging
from typing import Optional
from urllib.parse import quote_plus, urlparse

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateIndex, CreateTable

from swarm_tickets.core.clock import Clock
from swarm_tickets.core.db import Base
from swarm_tickets.core.errors import StorageUnavailable
from swarm_tickets.storage.sql_adapter import SQLAdapter

logger = logging.getLogger("swarm-tickets.storage.supabase")

DRIVER_PREFIX = "postgresql+psycopg2://"


def normalize_database_url(url: str) -> str:
    """Pin plain ``postgres://``/``postgresql://`` URLs to the psycopg2 driver."""
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return DRIVER_PREFIX + url[len(scheme):]
    return url


def build_supabase_dsn(supabase_url: str, password: str) -> str:
    """
    Derive the direct database connection string from the project URL.

    ``https://<ref>.supabase.co`` maps to
    ``postgres:<password>@db.<ref>.supabase.co:5432/postgres``.
    """
    host = urlparse(supabase_url).hostname or ""
    project_ref = host.split(".")[0]
    if not project_ref or not host.endswith("supabase.co"):
        raise StorageUnavailable(
            f"Cannot derive a database host from SUPABASE_URL={supabase_url!r}. "
            "Set SUPABASE_DB_URL to the connection string from the Supabase dashboard."
        )
    return f"{DRIVER_PREFIX}postgres:{quote_plus(password)}@db.{project_ref}.supabase.co:5432/postgres"


def schema_sql() -> str:
    """Postgres DDL for every table and index, for installing the schema by hand."""
    dialect = postgresql.dialect()
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).strip() + ";")
        for index in sorted(table.indexes, key=lambda idx: idx.name):
            statements.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)).strip() + ";")
    return "\n\n".join(statements) + "\n"


class SupabaseAdapter(SQLAdapter):
    kind = "supabase"

    def __init__(
        self,
        database_url: Optional[str] = None,
        supabase_url: Optional[str] = None,
        db_password: Optional[str] = None,
        create_schema: bool = True,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        if database_url:
            self.database_url = normalize_database_url(database_url)
        elif supabase_url and db_password:
            self.database_url = build_supabase_dsn(supabase_url, db_password)
        else:
            raise StorageUnavailable(
                "Supabase configuration missing. Set SUPABASE_DB_URL, or SUPABASE_URL "
                "together with SUPABASE_DB_PASSWORD."
            )
        self.create_schema = create_schema

    def _create_engine(self) -> Engine:
        try:
            # Conservative pool settings for Supabase Session mode (max ~15-20 connections)
            return create_engine(
                self.database_url,
                pool_pre_ping=True,
                pool_size=3,
                max_overflow=7,
                pool_recycle=3600,
                pool_timeout=30,
            )
        except ImportError as exc:
            raise StorageUnavailable(
                "Supabase storage requires psycopg2. Install it with: "
                "pip install 'swarm-tickets[supabase]'  (or: pip install psycopg2-binary)"
            ) from exc

    def _provision_schema(self, engine: Engine) -> None:
        if self.create_schema:
            logger.info("Ensuring Supabase tables exist")
            super()._provision_schema(engine)
            return

        missing = self.missing_tables()
        if missing:
            raise StorageUnavailable(
                f"Supabase tables do not exist: {', '.join(missing)}. Either set "
                "SUPABASE_CREATE_SCHEMA=true for auto-creation, or run the SQL from "
                "swarm_tickets.storage.supabase_adapter.schema_sql() in the SQL editor."
            )

    def _insert(self, table):
        return pg_insert(table)
