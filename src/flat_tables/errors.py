"""Exceptions raised by flat tables."""


class FlatTablesError(Exception):
    """Base exception for all flat tables errors"""
    pass


class ValidationError(FlatTablesError, ValueError):
    """Raised when an argument has the wrong shape"""
    pass


class StateError(FlatTablesError, RuntimeError):
    """Raised when a query that already ran is used again"""
    pass


class NotFoundError(FlatTablesError, LookupError):
    """Raised when a table or an entry does not exist"""
    pass


class MissingIndexFieldError(ValidationError):
    """Raised when a record lacks a field the table is indexed on"""

    def __init__(self, table: str, field: str) -> None:
        super().__init__(
            f"Table '{table}' has an index on '{field}', but the record has no such field"
        )
        self.table = table
        self.field = field


class NotIndexedError(FlatTablesError, LookupError):
    """Raised when find or order refers to a field that is not indexed"""

    def __init__(self, table: str, field: str) -> None:
        super().__init__(f"The field '{field}' is not an index of table '{table}'")
        self.table = table
        self.field = field


class UnsupportedPredicateError(FlatTablesError, TypeError):
    """Raised when a where clause is a callable instead of a mapping"""
    pass


class DecodeError(FlatTablesError, ValueError):
    """Raised when a stored file cannot be decoded"""
    pass


class StorageError(FlatTablesError, OSError):
    """Raised when a file or directory cannot be created, read or removed"""
    pass
