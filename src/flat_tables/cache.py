"""Result cache: materialized query results stored beside the table."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from flat_tables.entry_store import read_file, remove_file, write_file

log = logging.getLogger(__name__)


class ResultCache:
    """Stores full result sets as ``cache_<fingerprint>`` files.

    A disabled cache never stores or returns anything, but still removes
    stale files left by an enabled handle when a table is invalidated.
    """

    CACHE_PREFIX = "cache_"

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def path(self, table_dir: Path, fingerprint: str) -> Path:
        return table_dir / f"{self.CACHE_PREFIX}{fingerprint}"

    def load(self, table_dir: Path, fingerprint: str) -> list[dict[str, Any]] | None:
        """Return the cached result for fingerprint, or None on a miss."""
        if not self.enabled:
            return None
        path = self.path(table_dir, fingerprint)
        if not path.exists():
            log.debug(f"Cache miss {fingerprint} in {table_dir.name}")
            return None
        log.debug(f"Cache hit {fingerprint} in {table_dir.name}")
        return read_file(path)

    def store(self, table_dir: Path, fingerprint: str, rows: list[dict[str, Any]]) -> None:
        if self.enabled:
            write_file(self.path(table_dir, fingerprint), rows)

    def invalidate(self, table_dir: Path) -> int:
        """Delete every cached result of a table, returning how many were removed."""
        if not table_dir.is_dir():
            return 0
        removed = 0
        for path in table_dir.glob(f"{self.CACHE_PREFIX}*"):
            remove_file(path)
            removed += 1
        if removed:
            log.debug(f"Invalidated {removed} cached results in {table_dir.name}")
        return removed
