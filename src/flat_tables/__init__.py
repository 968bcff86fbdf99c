"""Flat Tables - A schemaless, file-per-record database for structured data."""

from flat_tables.database import Database
from flat_tables.errors import (
    DecodeError,
    FlatTablesError,
    MissingIndexFieldError,
    NotFoundError,
    NotIndexedError,
    StateError,
    StorageError,
    UnsupportedPredicateError,
    ValidationError,
)
from flat_tables.indexes import IndexStatus
from flat_tables.metadata import TableMetadata
from flat_tables.query import Order, QueryState, SortMode, TableQuery

__all__ = [
    # Main API
    "Database",
    "TableQuery",
    "IndexStatus",
    # Query state
    "QueryState",
    "Order",
    "SortMode",
    "TableMetadata",
    # Errors
    "FlatTablesError",
    "ValidationError",
    "StateError",
    "NotFoundError",
    "MissingIndexFieldError",
    "NotIndexedError",
    "UnsupportedPredicateError",
    "DecodeError",
    "StorageError",
]

__version__ = "0.1.0"
