"""
Schema Cache for SQL Chat Gate
Holds the grounding context (table columns + sample rows) handed to the
generator, and the table allow-list handed to the gate.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SchemaSnapshot = Dict[str, List[str]]          # table -> ordered column names
SampleSet = Dict[str, List[Dict[str, Any]]]    # table -> up to N rows
SchemaFetcher = Callable[[], Tuple[SchemaSnapshot, SampleSet]]


class SchemaFetchError(Exception):
    """Raised when the schema/sample fetch fails. The cached entry is left as it was."""


def _render_value(value: Any) -> str:
    return "NULL" if value is None else str(value)


@dataclass(frozen=True)
class CacheEntry:
    """One fetched snapshot. Replaced wholesale on refresh, never mutated."""
    schema: Dict[str, Sequence[str]]
    samples: Dict[str, Sequence[Dict[str, Any]]]
    fetched_at: float

    @classmethod
    def snapshot(cls, schema: SchemaSnapshot, samples: SampleSet, fetched_at: float) -> "CacheEntry":
        """Copy a fetcher result so later changes to its lists cannot reach the entry."""
        return cls(
            schema={table: tuple(columns) for table, columns in schema.items()},
            samples={table: tuple(dict(row) for row in rows) for table, rows in samples.items()},
            fetched_at=fetched_at,
        )

    @property
    def allowed_tables(self) -> FrozenSet[str]:
        """Lower-cased table names the gate accepts."""
        return frozenset(t.lower() for t in self.schema)

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def to_prompt_text(self) -> str:
        """Render schema and sample rows as the generator's grounding context."""
        blocks = []
        for table, columns in self.schema.items():
            lines = [f"TABLE {table} ({', '.join(columns)})"]
            rows = self.samples.get(table) or []
            if rows:
                lines.append(f"SAMPLE_ROWS {table}:")
                for i, row in enumerate(rows, start=1):
                    row_text = ", ".join(f"{k}={_render_value(v)}" for k, v in row.items())
                    lines.append(f"  {i}. {row_text}")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "schema": self.schema,
            "samples": self.samples,
            "fetchedAt": datetime.fromtimestamp(self.fetched_at, tz=timezone.utc).isoformat(),
        }


class SchemaCache:
    """Single-entry TTL cache around a schema fetcher"""

    def __init__(
        self,
        fetcher: SchemaFetcher,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize schema cache

        Args:
            fetcher: Returns (schema, samples); called once per miss
            ttl_seconds: Entry lifetime in seconds (10 minutes)
            clock: Time source, seconds since the epoch
        """
        self._fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "failures": 0,
        }

    def get(self, force_refresh: bool = False) -> CacheEntry:
        """
        Return the cached entry, fetching a new one on miss or forced refresh.

        Concurrent misses each fetch; the last completed fetch wins.

        Raises:
            SchemaFetchError: If the fetcher fails
        """
        entry = self._entry
        if entry is not None and not force_refresh and entry.age(self._clock()) < self.ttl_seconds:
            self._stats["hits"] += 1
            return entry

        if force_refresh:
            self._stats["refreshes"] += 1
            logger.info("[SCHEMA_CACHE] Forced refresh requested")
        else:
            self._stats["misses"] += 1
            logger.debug("[SCHEMA_CACHE] Miss (empty or expired)")

        try:
            schema, samples = self._fetcher()
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"[SCHEMA_CACHE] Fetch failed, keeping previous entry: {e}")
            if isinstance(e, SchemaFetchError):
                raise
            raise SchemaFetchError(str(e)) from e

        new_entry = CacheEntry.snapshot(schema, samples, fetched_at=self._clock())
        with self._lock:
            self._entry = new_entry

        logger.info(f"[SCHEMA_CACHE] Cached schema for {len(new_entry.schema)} tables")
        return new_entry

    def peek(self) -> Optional[CacheEntry]:
        """Current entry (possibly stale) without any I/O"""
        return self._entry

    def invalidate(self):
        """Drop the cached entry; the next get() fetches"""
        with self._lock:
            self._entry = None
        logger.info("[SCHEMA_CACHE] Entry invalidated")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        entry = self._entry
        total_requests = self._stats["hits"] + self._stats["misses"] + self._stats["refreshes"]
        hit_rate = self._stats["hits"] / total_requests if total_requests > 0 else 0

        return {
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "refreshes": self._stats["refreshes"],
            "failures": self._stats["failures"],
            "hit_rate": hit_rate,
            "ttl_seconds": self.ttl_seconds,
            "cached": entry is not None,
            "table_count": len(entry.schema) if entry else 0,
            "age_seconds": entry.age(self._clock()) if entry else None,
        }

    def reset_stats(self):
        """Reset statistics counters"""
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "failures": 0,
        }
        logger.info("[SCHEMA_CACHE] Statistics reset")
