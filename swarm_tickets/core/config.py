from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

from swarm_tickets.storage.factory import StorageConfig, StorageKind


class Settings(BaseSettings):
    PROJECT_NAME: str = "Swarm Tickets API"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    SWARM_TICKETS_STORAGE: StorageKind = StorageKind.JSON
    SWARM_TICKETS_JSON_PATH: str = "./tickets.json"
    SWARM_TICKETS_BACKUP_DIR: str = "./ticket-backups"
    SWARM_TICKETS_SQLITE_PATH: str = "./tickets.db"

    SUPABASE_DB_URL: Optional[str] = None
    SUPABASE_URL: Optional[str] = None
    SUPABASE_DB_PASSWORD: Optional[str] = None
    SUPABASE_CREATE_SCHEMA: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"

    def storage_config(self) -> StorageConfig:
        """Selection and location parameters for the adapter factory."""
        return StorageConfig(
            kind=self.SWARM_TICKETS_STORAGE,
            json_path=self.SWARM_TICKETS_JSON_PATH,
            backup_dir=self.SWARM_TICKETS_BACKUP_DIR,
            sqlite_path=self.SWARM_TICKETS_SQLITE_PATH,
            supabase_db_url=self.SUPABASE_DB_URL,
            supabase_url=self.SUPABASE_URL,
            supabase_db_password=self.SUPABASE_DB_PASSWORD,
            supabase_create_schema=self.SUPABASE_CREATE_SCHEMA,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
