import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from swarm_tickets.core.clock import Clock
from swarm_tickets.storage.base import StorageAdapter
from swarm_tickets.storage.json_adapter import JsonAdapter
from swarm_tickets.storage.sqlite_adapter import SqliteAdapter
from swarm_tickets.storage.supabase_adapter import SupabaseAdapter

logger = logging.getLogger("swarm-tickets.storage.factory")


class StorageKind(str, Enum):
    JSON = "json"
    SQLITE = "sqlite"
    SUPABASE = "supabase"


class StorageConfig(BaseModel):
    kind: StorageKind = StorageKind.JSON
    json_path: str = "./tickets.json"
    backup_dir: str = "./ticket-backups"
    sqlite_path: str = "./tickets.db"
    supabase_db_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_db_password: Optional[str] = None
    supabase_create_schema: bool = True


def build_storage_adapter(config: StorageConfig, clock: Optional[Clock] = None) -> StorageAdapter:
    """Construct (but do not initialize) the adapter ``config`` selects."""
    if config.kind == StorageKind.SQLITE:
        return SqliteAdapter(sqlite_path=config.sqlite_path, clock=clock)
    if config.kind == StorageKind.SUPABASE:
        return SupabaseAdapter(
            database_url=config.supabase_db_url,
            supabase_url=config.supabase_url,
            db_password=config.supabase_db_password,
            create_schema=config.supabase_create_schema,
            clock=clock,
        )
    return JsonAdapter(json_path=config.json_path, backup_dir=config.backup_dir, clock=clock)


def create_storage_adapter(config: StorageConfig, clock: Optional[Clock] = None) -> StorageAdapter:
    """
    Build and initialize the one adapter this process will use.

    Raises:
        StorageUnavailable: a driver or connection setting is missing
    """
    adapter = build_storage_adapter(config, clock=clock)
    logger.info(f"Using {adapter.kind} storage")
    adapter.initialize()
    return adapter
