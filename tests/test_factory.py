import pytest

from swarm_tickets.core.config import Settings
from swarm_tickets.core.errors import StorageUnavailable
from swarm_tickets.storage.factory import StorageConfig, StorageKind, build_storage_adapter, create_storage_adapter
from swarm_tickets.storage.json_adapter import JsonAdapter
from swarm_tickets.storage.sqlite_adapter import SqliteAdapter
from swarm_tickets.storage.supabase_adapter import SupabaseAdapter


def test_json_is_the_default(tmp_path):
    adapter = create_storage_adapter(
        StorageConfig(json_path=str(tmp_path / "t.json"), backup_dir=str(tmp_path / "b"))
    )

    assert isinstance(adapter, JsonAdapter)
    assert (tmp_path / "t.json").exists()


def test_sqlite_is_initialized(tmp_path):
    adapter = create_storage_adapter(StorageConfig(kind="sqlite", sqlite_path=str(tmp_path / "t.db")))

    assert isinstance(adapter, SqliteAdapter)
    assert adapter.get_all_tickets() == []
    adapter.close()


def test_supabase_is_built_from_project_settings():
    adapter = build_storage_adapter(
        StorageConfig(
            kind=StorageKind.SUPABASE,
            supabase_url="https://abcdefgh.supabase.co",
            supabase_db_password="secret",
            supabase_create_schema=False,
        )
    )

    assert isinstance(adapter, SupabaseAdapter)
    assert adapter.create_schema is False
    assert "db.abcdefgh.supabase.co" in adapter.database_url


def test_supabase_without_settings_fails_fast():
    with pytest.raises(StorageUnavailable):
        create_storage_adapter(StorageConfig(kind="supabase"))


def test_settings_read_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SWARM_TICKETS_STORAGE", "sqlite")
    monkeypatch.setenv("SWARM_TICKETS_SQLITE_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SUPABASE_CREATE_SCHEMA", "false")

    config = Settings().storage_config()

    assert config.kind == StorageKind.SQLITE
    assert config.sqlite_path == str(tmp_path / "env.db")
    assert config.supabase_create_schema is False


def test_unknown_storage_kind_is_rejected(monkeypatch):
    monkeypatch.setenv("SWARM_TICKETS_STORAGE", "mongodb")

    with pytest.raises(ValueError):
        Settings()
