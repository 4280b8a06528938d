"""Pytest configuration and shared fixtures."""

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from sqlledger.config import Config, DatabaseConfig, MigrationEntry, MigrationsConfig
from sqlledger.database import get_engine
from sqlledger.logging import ROOT_LOGGER

_ENV_VARS = (
    "DATABASE_URL",
    "PGHOST",
    "PGUSER",
    "PGPASSWORD",
    "PGDATABASE",
    "PGPORT",
    "SQLLEDGER_DB_SSL",
    "SQLLEDGER_LOG_LEVEL",
    "SQLLEDGER_LOG_JSON",
    "SQLLEDGER_LOG_FILE",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch):
    """Run every test in its own directory with no connection env vars."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def sql_dir(tmp_path: Path) -> Path:
    """Directory holding the migration scripts for a test."""
    directory = tmp_path / "sql"
    directory.mkdir()
    return directory


@pytest.fixture
def write_sql(sql_dir: Path):
    """Write a migration script into ``sql_dir`` and return its path."""

    def _write(name: str, sql: str) -> Path:
        path = sql_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(sql, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """SQLite database URL inside the test directory."""
    return f"sqlite:///{tmp_path / 'data' / 'test.db'}"


@pytest.fixture
def make_config(tmp_path: Path, sql_dir: Path, db_url: str):
    """Build a Config for a SQLite database and an ordered list of files."""

    def _make(*files: str, **overrides) -> Config:
        return Config(
            base_dir=tmp_path,
            log_file=None,
            database=DatabaseConfig(url=db_url, connect_attempts=1, retry_delay_seconds=0),
            migrations=MigrationsConfig(
                directory=sql_dir,
                units=[MigrationEntry(file=f, description=f"Migration {f}") for f in files],
            ),
            **overrides,
        )

    return _make


@pytest.fixture
def engine(make_config):
    """SQLAlchemy engine for the test database (empty)."""
    eng = get_engine(make_config())
    yield eng
    eng.dispose()
