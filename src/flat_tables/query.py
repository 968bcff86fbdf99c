"""Chainable, single-use query description for one table."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from flat_tables.errors import StateError, ValidationError

if TYPE_CHECKING:
    from flat_tables.database import Database
    from flat_tables.executor import QueryExecutor
    from flat_tables.indexes import IndexStatus


class SortMode(Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, direction: Any) -> SortMode:
        if isinstance(direction, SortMode):
            return direction
        if isinstance(direction, str):
            try:
                return cls(direction.lower())
            except ValueError:
                pass
        raise ValidationError(f"Order direction must be 'asc' or 'desc', got {direction!r}")


@dataclass(frozen=True)
class Order:
    key: str = "id"
    mode: SortMode = SortMode.ASC


@dataclass
class QueryState:
    """Everything one pending operation needs to know.

    ``limit == 0`` means unbounded; ``where`` and ``select`` of None mean
    no filter and no projection.
    """

    table: str
    select: list[str] | None = None
    where: Any = None
    order: Order = field(default_factory=Order)
    limit: int = 0
    offset: int = 0

    def is_plain(self) -> bool:
        """True if no filter or pagination is set."""
        return self.where is None and not self.limit and not self.offset

    def fingerprint(self) -> str:
        """Return a stable hash of the parameters that shape a result set.

        The where clause must already be known to be a mapping.
        """
        shape = [
            self.table,
            [self.order.key, self.order.mode.value],
            self.limit,
            self.offset,
            self.where,
            self.select,
        ]
        text = json.dumps(shape, sort_keys=True, separators=(",", ":"), default=repr)
        return hashlib.sha1(text.encode("utf-8")).hexdigest()


class TableQuery:
    """Builder returned by Database.table().

    Builder methods only record parameters and return the builder. A
    terminal method (insert, update, remove, find, all, first, count, meta,
    indexes) hands the collected state over to the executor; afterwards the
    builder is spent and every further call raises StateError.
    """

    def __init__(self, database: Database, executor: QueryExecutor, name: str) -> None:
        self._database = database
        self._executor = executor
        self._state: QueryState | None = QueryState(table=name)

    def __repr__(self) -> str:
        if self._state is None:
            return "TableQuery(<spent>)"
        return f"TableQuery({self._state.table!r})"

    @property
    def state(self) -> QueryState:
        if self._state is None:
            raise StateError("Query already ran")
        return self._state

    def _take(self) -> QueryState:
        state = self.state
        self._state = None
        return state

    # Builder methods

    def select(self, fields: str | Iterable[str]) -> TableQuery:
        self.state.select = [fields] if isinstance(fields, str) else list(fields)
        return self

    def where(self, predicate: Mapping[str, Any] | None = None) -> TableQuery:
        self.state.where = predicate
        return self

    def order(self, direction: str | SortMode = "desc", field: str = "id") -> TableQuery:
        self.state.order = Order(key=field, mode=SortMode.parse(direction))
        return self

    def limit(self, n: int) -> TableQuery:
        self.state.limit = n
        return self

    def offset(self, n: int) -> TableQuery:
        self.state.offset = n
        return self

    def skip(self, n: int) -> TableQuery:
        """Alias of offset()."""
        return self.offset(n)

    # Terminal methods

    def insert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Store a new record and return it with its assigned ``id``."""
        return self._executor.insert(self._take(), record)

    def update(self, entry_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
        """Replace the record with the given id; the id itself never changes."""
        return self._executor.update(self._take(), entry_id, values)

    def remove(self, ids: int | Iterable[int]) -> Database:
        """Remove one id or each id of a sequence, returning the database."""
        self._executor.remove(self._take(), ids)
        return self._database

    def find(self, value: Any, field: str = "id") -> dict[str, Any] | None:
        return self._executor.find(self._take(), value, field)

    def all(self) -> list[dict[str, Any]]:
        return self._executor.all(self._take())

    def first(self) -> dict[str, Any] | None:
        return self._executor.first(self._take())

    def count(self) -> int:
        return self._executor.count(self._take())

    def meta(self) -> dict[str, Any]:
        return self._executor.meta(self._take())

    def indexes(self, fields: list[str] | tuple[str, ...]) -> IndexStatus:
        """Declare the indexed fields of the table."""
        return self._executor.indexes_for(self._take(), fields)
