"""Configuration loading and validation for sqlledger."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_FILES = (Path("sqlledger.yaml"), Path("sqlledger.yml"))

# Environment variable -> key in the "database" section
_DATABASE_ENV = {
    "DATABASE_URL": "url",
    "PGHOST": "host",
    "PGUSER": "user",
    "PGPASSWORD": "password",
    "PGDATABASE": "name",
    "PGPORT": "port",
    "SQLLEDGER_DB_SSL": "ssl_required",
}

_TRUTHY = {"1", "true", "yes", "on"}


class DatabaseConfig(BaseModel):
    """Connection parameters for the target database.

    Either ``url`` or ``host`` must be set for a run to proceed.
    """

    url: str | None = None
    host: str | None = None
    user: str = "postgres"
    password: str | None = None
    name: str = "postgres"
    port: int = 5432
    ssl_required: bool = False
    connect_attempts: int = Field(5, ge=1)
    retry_delay_seconds: float = Field(2.0, ge=0)

    @field_validator("ssl_required", mode="before")
    @classmethod
    def parse_ssl_flag(cls, v: Any) -> Any:
        """Accept the usual string spellings of a boolean flag."""
        if isinstance(v, str):
            return v.strip().lower() in _TRUTHY
        return v

    @property
    def is_configured(self) -> bool:
        """Whether any connection parameters were supplied."""
        return bool(self.url or self.host)


class MigrationEntry(BaseModel):
    """One catalog entry: a SQL file and what it does."""

    file: str
    description: str = ""

    @field_validator("file")
    @classmethod
    def validate_file(cls, v: str) -> str:
        """Reject blank file names."""
        if not v.strip():
            raise ValueError("migration file must not be empty")
        return v.strip()


class MigrationsConfig(BaseModel):
    """Ordered migration catalog.

    The order of ``units`` is the application order. Never reorder entries
    once any of them has been applied to a live database.
    """

    directory: Path = Path(".")
    units: list[MigrationEntry] = Field(default_factory=list)


class VerifyConfig(BaseModel):
    """Schema objects expected to exist after a run."""

    model_config = ConfigDict(populate_by_name=True)

    schema_name: str | None = Field(None, alias="schema")
    tables: list[str] = Field(default_factory=list)
    views: list[str] = Field(default_factory=list)
    functions: list[str] = Field(default_factory=list)
    columns: dict[str, list[str]] = Field(default_factory=dict)


class Config(BaseModel):
    """Root configuration for sqlledger."""

    base_dir: Path = Path(".")
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Path | None = Path("logs/migrations.log")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    migrations: MigrationsConfig = Field(default_factory=MigrationsConfig)
    verify: VerifyConfig = Field(default_factory=VerifyConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @property
    def migrations_dir(self) -> Path:
        """Directory the catalog's file names are relative to."""
        return self._resolve(self.migrations.directory)

    @property
    def log_path(self) -> Path | None:
        """Resolved path of the append-only log file, if any."""
        if self.log_file is None:
            return None
        return self._resolve(self.log_file)

    def _resolve(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return self.base_dir / path

    @classmethod
    def from_mapping(cls, data: dict[str, Any], base_dir: Path | None = None) -> "Config":
        """Build a Config from parsed YAML data with the environment overlay.

        Args:
            data: Parsed configuration mapping.
            base_dir: Directory relative paths are resolved against.

        Returns:
            Validated Config instance.
        """
        data = dict(data)
        database = dict(data.get("database") or {})
        for env_var, key in _DATABASE_ENV.items():
            if env_var in os.environ:
                database[key] = os.environ[env_var]
        data["database"] = database

        if "SQLLEDGER_LOG_LEVEL" in os.environ:
            data["log_level"] = os.environ["SQLLEDGER_LOG_LEVEL"]
        if "SQLLEDGER_LOG_JSON" in os.environ:
            data["log_json"] = os.environ["SQLLEDGER_LOG_JSON"].strip().lower() in _TRUTHY
        if "SQLLEDGER_LOG_FILE" in os.environ:
            data["log_file"] = os.environ["SQLLEDGER_LOG_FILE"] or None

        if base_dir is not None:
            data["base_dir"] = base_dir

        return cls.model_validate(data)

    @classmethod
    def load(cls, config_path: Path | str = DEFAULT_CONFIG_FILES[0]) -> "Config":
        """Load configuration from YAML file with env var overlay.

        Relative paths inside the file (migrations directory, log file) are
        resolved against the directory containing it.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"Configuration root must be a mapping: {config_path}")

        return cls.from_mapping(yaml_config, base_dir=config_path.parent)

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        The environment overlay applies to the defaults too, so a bare
        ``DATABASE_URL`` is enough to drive a run.

        Args:
            config_path: Optional path to YAML configuration file.

        Returns:
            Config instance (from file or defaults).
        """
        if config_path is None:
            for path in DEFAULT_CONFIG_FILES:
                if path.exists():
                    return cls.load(path)
            return cls.from_mapping({})

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls.from_mapping({})
