"""Tests for the table migration script."""
import pytest

import config.settings as settings_module
from database.models import Base
from scripts.migrate_db import run_migration


@pytest.fixture
def sqlite_config(tmp_path, monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)
    path = tmp_path / "settings.yaml"
    path.write_text(
        "database:\n"
        f"  url: \"sqlite:///{tmp_path / 'migrate.db'}\"\n"
        "  store_backend: sql\n"
    )
    return str(path)


@pytest.mark.asyncio
async def test_check_reports_missing_tables(sqlite_config):
    missing = await run_migration(check_only=True, config_path=sqlite_config)
    assert missing == set(Base.metadata.tables.keys())


@pytest.mark.asyncio
async def test_migration_creates_everything(sqlite_config):
    assert await run_migration(config_path=sqlite_config) == set()
    assert await run_migration(check_only=True, config_path=sqlite_config) == set()
