"""Per-table metadata: id counter, row count and index sequences."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from flat_tables.entry_store import read_file, remove_file, write_file
from flat_tables.errors import DecodeError, NotFoundError

log = logging.getLogger(__name__)


@dataclass
class TableMetadata:
    """Bookkeeping record stored in a table's meta file.

    ``indexes`` maps a field name to a sequence of values. All sequences have
    the same length and position i in each of them describes the same row;
    the ``id`` sequence is always present once the table holds data.
    """

    last_id: int = 0
    count: int = 0
    indexes: dict[str, list[Any]] = field(default_factory=dict)

    @property
    def ids(self) -> list[int]:
        return self.indexes.get("id", [])

    def position_of(self, entry_id: int) -> int | None:
        """Return the row position of an id, or None if it is not indexed."""
        try:
            return self.ids.index(entry_id)
        except ValueError:
            return None

    def copy(self) -> TableMetadata:
        return TableMetadata(
            last_id=self.last_id,
            count=self.count,
            indexes=copy.deepcopy(self.indexes),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_id": self.last_id,
            "count": self.count,
            "indexes": copy.deepcopy(self.indexes),
        }

    @classmethod
    def from_dict(cls, data: Any) -> TableMetadata:
        """Build metadata from its decoded file contents.

        Raises:
            DecodeError: If the data is malformed or the index sequences
                are not aligned.
        """
        if not isinstance(data, dict):
            raise DecodeError(f"Metadata must be a mapping, got {type(data).__name__}")
        try:
            last_id = data["last_id"]
            count = data["count"]
            indexes = data["indexes"]
        except KeyError as e:
            raise DecodeError(f"Metadata is missing key {e}") from e

        if not isinstance(last_id, int) or not isinstance(count, int):
            raise DecodeError("Metadata last_id and count must be integers")
        if not isinstance(indexes, dict) or not all(
            isinstance(values, list) for values in indexes.values()
        ):
            raise DecodeError("Metadata indexes must map field names to lists")

        lengths = {len(values) for values in indexes.values()}
        if len(lengths) > 1:
            raise DecodeError(f"Index sequences are misaligned (lengths {sorted(lengths)})")

        return cls(last_id=last_id, count=count, indexes=indexes)


class MetadataStore:
    """Loads and persists table metadata, caching it for the owning handle."""

    META_FILE = "meta"

    def __init__(self, table_dir: Callable[[str], Path]) -> None:
        """Initialize the metadata store.

        Args:
            table_dir: Maps a table name to its directory.
        """
        self._table_dir = table_dir
        self._cache: dict[str, TableMetadata] = {}

    def path(self, table: str) -> Path:
        return self._table_dir(table) / self.META_FILE

    def exists(self, table: str) -> bool:
        return table in self._cache or self.path(table).exists()

    def load(self, table: str) -> TableMetadata:
        """Return the metadata for a table.

        The returned object is the cached instance; callers that intend to
        modify it must work on a copy and hand it to persist().

        Raises:
            NotFoundError: If the table has never been initialized.
        """
        if table in self._cache:
            return self._cache[table]

        path = self.path(table)
        if not path.exists():
            raise NotFoundError(f"Metadata for table '{table}' not found")

        metadata = TableMetadata.from_dict(read_file(path))
        self._cache[table] = metadata
        return metadata

    def persist(self, table: str, metadata: TableMetadata) -> None:
        """Write metadata to disk, then make it the cached copy."""
        write_file(self.path(table), metadata.to_dict())
        self._cache[table] = metadata
        log.debug(
            f"Persisted metadata for '{table}': last_id={metadata.last_id}, count={metadata.count}"
        )

    def discard(self, table: str) -> None:
        """Delete the meta file, returning the table to its uninitialized state."""
        self._cache.pop(table, None)
        path = self.path(table)
        if path.exists():
            remove_file(path)

    def forget(self, table: str) -> None:
        self._cache.pop(table, None)

    def clear(self) -> None:
        self._cache.clear()
