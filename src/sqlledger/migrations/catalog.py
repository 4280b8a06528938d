"""Ordered catalog of SQL migration units.

The catalog is an explicit list taken from configuration, never a directory
scan, so the application order is exactly what the operator wrote down.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from sqlledger.config import MigrationsConfig
from sqlledger.errors import CatalogError


@dataclass(frozen=True)
class MigrationUnit:
    """One SQL script in the catalog.

    Attributes:
        filename: Ledger key; the entry's path relative to the migrations
            directory, in POSIX form.
        description: Human-readable label.
        path: Resolved location of the SQL source.
    """

    filename: str
    description: str
    path: Path

    def load_source(self) -> str | None:
        """Read the SQL text, or return None if the file does not exist."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None


class Catalog(Sequence[MigrationUnit]):
    """Immutable ordered sequence of migration units with unique filenames."""

    def __init__(self, units: Iterable[MigrationUnit]) -> None:
        self._units = tuple(units)

        seen: set[str] = set()
        for unit in self._units:
            if unit.filename in seen:
                raise CatalogError(f"Duplicate migration in catalog: {unit.filename}")
            seen.add(unit.filename)

    @classmethod
    def from_config(cls, config: MigrationsConfig, base_dir: Path | None = None) -> "Catalog":
        """Build the catalog from the migrations section of the configuration.

        Args:
            config: Migrations configuration.
            base_dir: Directory a relative ``config.directory`` is resolved
                against. Defaults to the current directory.

        Returns:
            Catalog in configured order.
        """
        directory = config.directory
        if not directory.is_absolute() and base_dir is not None:
            directory = base_dir / directory

        return cls(
            MigrationUnit(
                filename=Path(entry.file).as_posix(),
                description=entry.description or entry.file,
                path=directory / entry.file,
            )
            for entry in config.units
        )

    @property
    def filenames(self) -> list[str]:
        """Filenames in application order."""
        return [unit.filename for unit in self._units]

    def __getitem__(self, index):  # type: ignore[override]
        return self._units[index]

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self._units)

    def __repr__(self) -> str:
        return f"Catalog({self.filenames!r})"
