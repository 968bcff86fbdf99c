"""Executes terminal operations of a query against the table files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from flat_tables.cache import ResultCache
from flat_tables.entry_store import normalize_value, read_file, remove_file, write_file
from flat_tables.errors import (
    NotFoundError,
    NotIndexedError,
    UnsupportedPredicateError,
    ValidationError,
)
from flat_tables.indexes import IndexManager, IndexStatus
from flat_tables.metadata import MetadataStore, TableMetadata
from flat_tables.query import QueryState, SortMode

if TYPE_CHECKING:
    from flat_tables.database import Database

log = logging.getLogger(__name__)


def _check_id(entry_id: Any) -> int:
    if isinstance(entry_id, bool) or not isinstance(entry_id, int):
        raise ValidationError(f"Entry ids must be integers, got {entry_id!r}")
    return entry_id


def _check_where(where: Any) -> None:
    if where is None:
        return
    if isinstance(where, Mapping):
        for key, value in where.items():
            if not isinstance(key, str):
                raise ValidationError("Where clause keys must be field names")
            normalize_value(value, f"where.{key}")
        return
    if callable(where):
        raise UnsupportedPredicateError("Closures are not allowed in where clauses")
    raise ValidationError(f"Where clause must be a mapping, got {type(where).__name__}")


def _check_paging(state: QueryState) -> None:
    for name in ("limit", "offset"):
        value = getattr(state, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")


def _sort_key(value: Any) -> tuple:
    """Order None < numbers < strings < everything else."""
    if value is None:
        return (0, 0)
    if isinstance(value, (bool, int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, json.dumps(value, sort_keys=True))


def matches(entry: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    """Return True if entry satisfies every field of the where clause.

    A list-valued entry field must contain the expected value, or every
    element of it when the expected value is itself a list. Other fields
    must compare equal. Entries lacking a field never match.
    """
    for key, expected in where.items():
        if key not in entry:
            return False
        actual = entry[key]
        if isinstance(actual, list):
            needles = expected if isinstance(expected, (list, tuple)) else [expected]
            if not all(needle in actual for needle in needles):
                return False
        elif actual != expected:
            return False
    return True


def project(entry: dict[str, Any], select: list[str] | None) -> dict[str, Any]:
    """Keep the selected fields in their listed order, skipping absent ones."""
    if select is None:
        return entry
    return {key: entry[key] for key in select if key in entry}


class QueryExecutor:
    """Runs QueryState objects handed over by TableQuery."""

    ENTRY_PREFIX = "entry_"

    def __init__(self, database: Database, metadata: MetadataStore, cache: ResultCache) -> None:
        self._database = database
        self._metadata = metadata
        self._cache = cache
        self.indexes = IndexManager(metadata, self.load_entry, self.invalidate)

    def entry_path(self, table: str, entry_id: int) -> Path:
        return self._database.table_dir(table) / f"{self.ENTRY_PREFIX}{entry_id}"

    def load_entry(self, table: str, entry_id: int) -> dict[str, Any]:
        path = self.entry_path(table, entry_id)
        if not path.exists():
            raise NotFoundError(f"Entry {entry_id} of table '{table}' not found")
        return read_file(path)

    def invalidate(self, table: str) -> None:
        self._cache.invalidate(self._database.table_dir(table))

    # Mutations

    def insert(self, state: QueryState, record: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(record, Mapping):
            raise ValidationError(f"Can only insert mappings, got {type(record).__name__}")
        table = state.table
        self._database.table_dir(table)

        previous = self._metadata.load(table) if self._metadata.exists(table) else None
        metadata = TableMetadata() if previous is None else previous.copy()

        entry = normalize_value(record, "record")
        entry_id = metadata.last_id + 1
        entry["id"] = entry_id

        fields = self.indexes.fields_for(table, metadata)
        self.indexes.apply_insert(table, metadata, fields, entry)
        metadata.last_id = entry_id
        metadata.count += 1

        if previous is None:
            self._database.create_table_dir(table)

        # Every entry file on disk is listed in the committed metadata.
        self._metadata.persist(table, metadata)
        try:
            write_file(self.entry_path(table, entry_id), entry)
        except BaseException:
            log.warning(f"Entry write failed, restoring metadata of '{table}'")
            if previous is None:
                self._metadata.discard(table)
            else:
                self._metadata.persist(table, previous)
            raise

        self.invalidate(table)
        log.debug(f"Inserted entry {entry_id} into '{table}'")
        return entry

    def update(self, state: QueryState, entry_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
        _check_id(entry_id)
        if not isinstance(values, Mapping):
            raise ValidationError(f"Can only update with mappings, got {type(values).__name__}")
        table = state.table

        path = self.entry_path(table, entry_id)
        if not path.exists():
            raise NotFoundError(f"Could not find entry with id {entry_id} in '{table}'")

        old = read_file(path)
        new = normalize_value(values, "values")
        new["id"] = old["id"]

        metadata = self._metadata.load(table)
        updated = metadata.copy()
        changed = self.indexes.apply_update(table, updated, old, new)
        if changed:
            self._metadata.persist(table, updated)

        try:
            write_file(path, new)
        except BaseException:
            if changed:
                log.warning(f"Entry write failed, restoring indexes of '{table}'")
                self._metadata.persist(table, metadata)
            raise

        self.invalidate(table)
        log.debug(f"Updated entry {entry_id} of '{table}'")
        return new

    def remove(self, state: QueryState, ids: int | Iterable[int]) -> None:
        """Remove one id, or each id of a sequence as its own step.

        With a sequence all ids are type-checked before anything is removed,
        then every id is attempted; ids that were not found are reported
        together afterwards, and the removals that did succeed stay removed.
        """
        if isinstance(ids, (list, tuple, set, frozenset, range)):
            for entry_id in ids:
                _check_id(entry_id)
            missing = []
            for entry_id in ids:
                try:
                    self._remove_one(state.table, entry_id)
                except NotFoundError:
                    missing.append(entry_id)
            if missing:
                raise NotFoundError(f"Could not find entries {missing} in '{state.table}'")
            return
        self._remove_one(state.table, ids)

    def _remove_one(self, table: str, entry_id: int) -> None:
        _check_id(entry_id)
        path = self.entry_path(table, entry_id)
        if not path.exists():
            raise NotFoundError(f"Could not find entry with id {entry_id} in '{table}'")

        metadata = self._metadata.load(table)
        updated = metadata.copy()
        self.indexes.apply_remove(updated, entry_id)
        self._metadata.persist(table, updated)

        try:
            remove_file(path)
        except BaseException:
            log.warning(f"Could not delete entry {entry_id}, restoring metadata of '{table}'")
            self._metadata.persist(table, metadata)
            raise

        self.invalidate(table)
        log.debug(f"Removed entry {entry_id} from '{table}'")

    def indexes_for(self, state: QueryState, fields: Any) -> IndexStatus:
        self._database.table_dir(state.table)
        return self.indexes.declare(state.table, fields)

    # Reads

    def find(self, state: QueryState, value: Any, field: str = "id") -> dict[str, Any] | None:
        if field == "id":
            return self._find_by_id(state, value)

        metadata = self._metadata.load(state.table)
        entry_id = self.indexes.find_id_by(state.table, metadata, field, value)
        if entry_id is None:
            return None
        return self._find_by_id(state, entry_id)

    def _find_by_id(self, state: QueryState, entry_id: Any) -> dict[str, Any] | None:
        path = self.entry_path(state.table, _check_id(entry_id))
        if not path.exists():
            return None
        return project(read_file(path), state.select)

    def all(self, state: QueryState) -> list[dict[str, Any]]:
        table = state.table
        table_dir = self._database.table_dir(table)
        _check_where(state.where)
        _check_paging(state)

        fingerprint = state.fingerprint()
        cached = self._cache.load(table_dir, fingerprint)
        if cached is not None:
            return cached

        metadata = self._metadata.load(table)
        if not metadata.ids:
            return []

        ids = self._ordered_ids(table, metadata, state)
        if state.limit > 0:
            ids = ids[state.offset : state.offset + state.limit]
        elif state.offset > 0:
            ids = ids[state.offset :]

        rows = []
        for entry_id in ids:
            entry = self.load_entry(table, entry_id)
            if state.where is not None and not matches(entry, state.where):
                continue
            rows.append(project(entry, state.select))

        self._cache.store(table_dir, fingerprint, rows)
        return rows

    def _ordered_ids(self, table: str, metadata: TableMetadata, state: QueryState) -> list[int]:
        """Return row ids sorted on the order key.

        Rows with equal keys keep ascending id order in both directions.
        """
        key = state.order.key
        if key not in metadata.indexes:
            raise NotIndexedError(table, key)

        rows = sorted(zip(metadata.ids, metadata.indexes[key]), key=lambda row: row[0])
        rows.sort(key=lambda row: _sort_key(row[1]), reverse=state.order.mode is SortMode.DESC)
        return [entry_id for entry_id, _ in rows]

    def first(self, state: QueryState) -> dict[str, Any] | None:
        rows = self.all(state)
        return rows[0] if rows else None

    def count(self, state: QueryState) -> int:
        if state.is_plain():
            self._database.table_dir(state.table)
            return self._metadata.load(state.table).count
        return len(self.all(state))

    def meta(self, state: QueryState) -> dict[str, Any]:
        self._database.table_dir(state.table)
        return self._metadata.load(state.table).to_dict()
