"""Database handle: one directory of tables under a root path."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from flat_tables.cache import ResultCache
from flat_tables.errors import StorageError, ValidationError
from flat_tables.executor import QueryExecutor
from flat_tables.indexes import IndexManager
from flat_tables.metadata import MetadataStore
from flat_tables.query import TableQuery

log = logging.getLogger(__name__)


def _check_name(kind: str, name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise ValidationError(f"{kind} name must be a non-empty string, got {name!r}")
    if "/" in name or "\\" in name or name.startswith(".") or "\x00" in name:
        raise ValidationError(f"Invalid {kind.lower()} name: {name!r}")
    return name


class Database:
    """Entry point for reading and writing the tables of one database.

    Tables live in ``<root>/<name>/<table>/`` and are created on first
    insert. The handle owns its metadata cache and index declarations;
    both are discarded by close(). A handle is not thread-safe, and
    concurrent writers in other processes must be excluded by the caller.

    Example:
        with Database("/var/data") as db:
            product = db.table("products").insert({"name": "Hoodie"})
            db.table("products").find(product["id"])
    """

    # Empty file that stops web servers from listing the directory
    MARKER_FILE = "index.html"

    def __init__(self, root: Path | str, name: str = "default", *, use_cache: bool = True) -> None:
        """Open (and create if needed) a database directory.

        Args:
            root: Existing or creatable directory holding all databases.
            name: Logical database name, used as the directory name.
            use_cache: Store and reuse query results on disk.

        Raises:
            StorageError: If the database directory cannot be created.
        """
        self.name = _check_name("Database", name)
        self.root = Path(root)
        self.data_dir = self.root / name

        self._make_dir(self.data_dir, parents=True)

        self.metadata = MetadataStore(self.table_dir)
        self.cache = ResultCache(enabled=use_cache)
        self.executor = QueryExecutor(self, self.metadata, self.cache)

    def __repr__(self) -> str:
        return f"Database({str(self.root)!r}, {self.name!r})"

    @property
    def indexes(self) -> IndexManager:
        return self.executor.indexes

    def _make_dir(self, path: Path, parents: bool = False) -> None:
        if path.is_dir():
            return
        try:
            path.mkdir(parents=parents, exist_ok=True)
            (path / self.MARKER_FILE).touch()
        except OSError as e:
            raise StorageError(f"Could not create directory {path}: {e}") from e
        log.debug(f"Created directory {path}")

    def table_dir(self, table: str) -> Path:
        """Return the directory of a table, validating its name."""
        return self.data_dir / _check_name("Table", table)

    def create_table_dir(self, table: str) -> Path:
        path = self.table_dir(table)
        self._make_dir(path)
        return path

    def table(self, name: str) -> TableQuery:
        """Start a new query on a table.

        Every operation needs its own query: the returned builder can run
        exactly one terminal method.
        """
        return TableQuery(self, self.executor, name)

    def tables(self) -> list[str]:
        """List the tables that hold metadata, sorted by name."""
        return sorted(
            path.name
            for path in self.data_dir.iterdir()
            if path.is_dir() and (path / MetadataStore.META_FILE).exists()
        )

    def close(self) -> None:
        """Discard cached metadata and index declarations."""
        self.metadata.clear()
        self.indexes.clear()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
