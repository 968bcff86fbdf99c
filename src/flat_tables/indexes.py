"""Secondary indexes kept as position-aligned value sequences."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Mapping

from flat_tables.errors import MissingIndexFieldError, NotIndexedError, ValidationError
from flat_tables.metadata import MetadataStore, TableMetadata

log = logging.getLogger(__name__)


class IndexStatus(Enum):
    """Outcome of declaring the indexes of a table."""

    CREATED = "created"
    UNCHANGED = "unchanged"
    REBUILT = "rebuilt"


def normalize_fields(fields: Any) -> list[str]:
    """Return index fields without duplicates and with ``id`` included.

    Raises:
        ValidationError: If fields is not a list or tuple of strings.
    """
    if not isinstance(fields, (list, tuple)):
        raise ValidationError(
            f"Invalid indexes definition, expected a list of field names, got {type(fields).__name__}"
        )
    result: list[str] = []
    for name in fields:
        if not isinstance(name, str) or not name:
            raise ValidationError(f"Invalid index field name: {name!r}")
        if name not in result:
            result.append(name)
    if "id" not in result:
        result.append("id")
    return result


class IndexManager:
    """Declares, maintains and searches the indexes of a handle's tables.

    Declarations live only as long as the handle that owns this manager.
    Mutating helpers (apply_*) change the metadata object they are given and
    never touch the disk; persisting is left to the caller.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        load_entry: Callable[[str, int], dict[str, Any]],
        invalidate: Callable[[str], None],
    ) -> None:
        self._metadata = metadata
        self._load_entry = load_entry
        self._invalidate = invalidate
        self._declared: dict[str, list[str]] = {}

    def declared(self, table: str) -> list[str] | None:
        fields = self._declared.get(table)
        return list(fields) if fields is not None else None

    def declare(self, table: str, fields: Any) -> IndexStatus:
        """Declare the indexed fields of a table.

        Returns:
            CREATED if the table holds no data yet (the declaration is used
            at first insert), UNCHANGED if the table is already indexed on
            exactly these fields, REBUILT if the index sequences had to be
            regenerated from the stored entries.
        """
        normalized = normalize_fields(fields)

        if not self._metadata.exists(table):
            self._declared[table] = normalized
            return IndexStatus.CREATED

        metadata = self._metadata.load(table)
        if set(metadata.indexes) == set(normalized):
            self._declared[table] = normalized
            return IndexStatus.UNCHANGED

        rebuilt = self.rebuild(table, metadata, normalized)
        self._metadata.persist(table, rebuilt)
        self._invalidate(table)
        self._declared[table] = normalized
        log.info(f"Rebuilt indexes of '{table}' on {normalized} ({len(rebuilt.ids)} rows)")
        return IndexStatus.REBUILT

    def rebuild(self, table: str, metadata: TableMetadata, fields: list[str]) -> TableMetadata:
        """Return a copy of metadata with index sequences regenerated for fields.

        Rows are scanned in ascending id order.
        """
        ids = sorted(metadata.ids)
        indexes: dict[str, list[Any]] = {name: [] for name in fields}
        for entry_id in ids:
            entry = self._load_entry(table, entry_id)
            for name in fields:
                if name not in entry:
                    raise MissingIndexFieldError(table, name)
                indexes[name].append(entry[name])

        result = metadata.copy()
        result.indexes = indexes
        return result

    def fields_for(self, table: str, metadata: TableMetadata) -> list[str]:
        """Return the fields a mutation of the table has to keep indexed."""
        declared = self._declared.get(table)
        if declared is not None and (not metadata.indexes or set(declared) == set(metadata.indexes)):
            return list(declared)
        if metadata.indexes:
            return list(metadata.indexes)
        return ["id"]

    def apply_insert(
        self, table: str, metadata: TableMetadata, fields: list[str], record: Mapping[str, Any]
    ) -> None:
        """Append a new row to every index sequence.

        All fields are checked before anything is appended, so a failure
        leaves metadata untouched.
        """
        for name in fields:
            if name not in record:
                raise MissingIndexFieldError(table, name)
        for name in fields:
            metadata.indexes.setdefault(name, []).append(record[name])

    def apply_update(
        self,
        table: str,
        metadata: TableMetadata,
        old: Mapping[str, Any],
        new: Mapping[str, Any],
    ) -> bool:
        """Rewrite the row's indexed values if any of them changed.

        Returns:
            True if metadata was modified.
        """
        fields = [name for name in metadata.indexes if name != "id"]
        for name in fields:
            if name not in new:
                raise MissingIndexFieldError(table, name)

        changed = [name for name in fields if old.get(name) != new[name]]
        if not changed:
            return False

        position = metadata.position_of(old["id"])
        if position is None:
            return False
        for name in changed:
            metadata.indexes[name][position] = new[name]
        return True

    def apply_remove(self, metadata: TableMetadata, entry_id: int) -> None:
        """Drop the row of entry_id from every sequence and decrement count."""
        position = metadata.position_of(entry_id)
        if position is not None:
            for values in metadata.indexes.values():
                del values[position]
        metadata.count -= 1

    def find_id_by(self, table: str, metadata: TableMetadata, field: str, value: Any) -> int | None:
        """Return the id of the first row whose field equals value, or None."""
        if field not in metadata.indexes:
            raise NotIndexedError(table, field)
        for position, candidate in enumerate(metadata.indexes[field]):
            if candidate == value:
                return metadata.ids[position]
        return None

    def forget(self, table: str) -> None:
        self._declared.pop(table, None)

    def clear(self) -> None:
        self._declared.clear()
