import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


class _NullMarker:
    """Cached "queried, found nothing" value."""

    def __repr__(self):
        return "NULL_MARKER"


NULL_MARKER = _NullMarker()
_MISSING = object()

CacheKey = Tuple[str, ...]


class LookupCache:
    """
    Process-scoped cache of reference data lookups, shared by every worker thread.

    Keys are ("KEY", table, key_column, key_value, target_column) or
    ("CONDITION", table, condition, target_column). Values for a key are
    deterministic; concurrent writers on one key store the same value.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Any:
        """Returns the cached value, NULL_MARKER for a cached miss, or _MISSING when never queried."""
        with self._lock:
            return self._entries.get(key, _MISSING)

    def put(self, key: CacheKey, value: Any):
        with self._lock:
            self._entries[key] = NULL_MARKER if value is None else value

    def clear(self, table_name: Optional[str] = None):
        with self._lock:
            if table_name is None:
                self._entries.clear()
            else:
                for key in [k for k in self._entries if k[1] == table_name]:
                    del self._entries[key]

    def __len__(self):
        with self._lock:
            return len(self._entries)


class LookupService(ABC):
    """
    Reference-data point lookups with hit and miss caching.

    Subclasses only implement the backing queries. A failing query is logged,
    answered with None and cached as a miss; it never reaches the caller.
    """

    def __init__(self, cache: Optional[LookupCache] = None):
        self.cache = cache if cache is not None else LookupCache()

    @abstractmethod
    def _query_by_key(self, table_name: str, key_column: str, key_value: str, target_column: str) -> Any:
        """Returns the first matching value or None."""

    @abstractmethod
    def _query_by_condition(self, table_name: str, where_condition: str, target_column: str) -> Any:
        """Returns the first matching value or None."""

    def lookup(self, table_name: Optional[str], key_column: Optional[str], key_value: Optional[str],
               target_column: Optional[str]) -> Any:
        if table_name is None or key_column is None or key_value is None or target_column is None:
            logger.warning(f"Lookup skipped - null parameter: table={table_name}, keyColumn={key_column}, "
                           f"keyValue={key_value}, targetColumn={target_column}")
            return None

        # Fixed-width keys are frequently space padded
        key_value = key_value.strip()
        cache_key = ("KEY", table_name, key_column, key_value, target_column)
        description = f"{table_name}.{target_column} where {key_column}='{key_value}'"
        return self._cached(cache_key, description,
                            lambda: self._query_by_key(table_name, key_column, key_value, target_column))

    def lookup_with_condition(self, table_name: Optional[str], where_condition: Optional[str],
                              target_column: Optional[str]) -> Any:
        if table_name is None or where_condition is None or target_column is None:
            logger.warning(f"Lookup skipped - null parameter: table={table_name}, condition={where_condition}, "
                           f"targetColumn={target_column}")
            return None

        where_condition = where_condition.strip()
        cache_key = ("CONDITION", table_name, where_condition, target_column)
        description = f"{table_name}.{target_column} where {where_condition}"
        return self._cached(cache_key, description,
                            lambda: self._query_by_condition(table_name, where_condition, target_column))

    def _cached(self, cache_key: CacheKey, description: str, query) -> Any:
        cached = self.cache.get(cache_key)
        if cached is not _MISSING:
            logger.debug(f"Cache hit: {description}")
            return None if cached is NULL_MARKER else cached

        try:
            value = query()
        except Exception as e:
            logger.error(f"Lookup failed: {description}: {e}")
            value = None
        else:
            if value is None:
                logger.info(f"Lookup not found: {description} (no matching row)")
            else:
                logger.info(f"Lookup found: {description} => {value}")

        self.cache.put(cache_key, value)
        return value

    def clear_cache(self, table_name: Optional[str] = None):
        """Clears everything, or only the entries of one table."""
        self.cache.clear(table_name)
        if table_name is None:
            logger.info("Lookup cache cleared")
        else:
            logger.info(f"Lookup cache cleared for table: {table_name}")


class DatabaseLookupService(LookupService):
    """
    Runs lookups against a database through a psycopg_pool.ConnectionPool.

    The pool is passed in by the caller or opened by `from_conninfo`. Key
    lookups are parameterized. Condition lookups embed the WHERE clause as-is:
    its shape comes from mapping configuration, and the LOOKUP transform
    doubles single quotes in every document value it fills in.
    """

    def __init__(self, pool, cache: Optional[LookupCache] = None, statement_timeout_ms: int = 5000):
        super().__init__(cache)
        self.pool = pool
        self.statement_timeout_ms = statement_timeout_ms

    @classmethod
    def from_conninfo(cls, conninfo: str, min_size: int = 1, max_size: int = 4,
                      statement_timeout_ms: int = 5000) -> "DatabaseLookupService":
        """Opens a pool owned by the returned service. Close it with `close()`."""
        pool = ConnectionPool(conninfo, min_size=min_size, max_size=max_size, open=True)
        logger.info(f"Opened lookup connection pool (min={min_size}, max={max_size})")
        return cls(pool, statement_timeout_ms=statement_timeout_ms)

    def close(self):
        self.pool.close()

    def _first_value(self, query: sql.Composable, params: Optional[List[Any]], target_column: str) -> Any:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql.SQL("SET LOCAL statement_timeout = {}").format(sql.Literal(self.statement_timeout_ms)))
                cur.execute(query, params)
                row = cur.fetchone()
        if row is None:
            return None
        return row.get(target_column)

    def _query_by_key(self, table_name: str, key_column: str, key_value: str, target_column: str) -> Any:
        query = sql.SQL("SELECT {target} FROM {table} WHERE {key} = %s").format(
            target=sql.Identifier(target_column),
            table=sql.Identifier(*table_name.split(".")),
            key=sql.Identifier(key_column),
        )
        return self._first_value(query, [key_value], target_column)

    def _query_by_condition(self, table_name: str, where_condition: str, target_column: str) -> Any:
        query = sql.SQL("SELECT {target} FROM {table} WHERE {condition}").format(
            target=sql.Identifier(target_column),
            table=sql.Identifier(*table_name.split(".")),
            condition=sql.SQL(where_condition),
        )
        return self._first_value(query, None, target_column)


_EQUALITY = re.compile(r"^\s*(\w+)\s*=\s*'((?:[^']|'')*)'\s*$")


def parse_equality_condition(where_condition: str) -> List[Tuple[str, str]]:
    """Splits "A = 'x' AND B = 'y'" into [("A", "x"), ("B", "y")]."""
    clauses = []
    for part in re.split(r"\s+AND\s+", where_condition, flags=re.IGNORECASE):
        match = _EQUALITY.match(part)
        if not match:
            raise ValueError(f"Unsupported lookup condition clause: '{part.strip()}'")
        clauses.append((match.group(1), match.group(2).replace("''", "'")))
    return clauses


class InMemoryLookupService(LookupService):
    """Lookups over registered in-memory tables (list of row dicts per table)."""

    def __init__(self, cache: Optional[LookupCache] = None):
        super().__init__(cache)
        self._tables: Dict[str, List[Dict[str, Any]]] = {}

    def register_lookup_table(self, table_name: str, rows: List[Dict[str, Any]]):
        self._tables[table_name] = list(rows)
        self.cache.clear(table_name)
        logger.info(f"Registered lookup table: {table_name} with {len(rows)} entries")

    def _rows(self, table_name: str) -> List[Dict[str, Any]]:
        if table_name not in self._tables:
            raise KeyError(f"Lookup table not registered: {table_name}")
        return self._tables[table_name]

    def _query_by_key(self, table_name: str, key_column: str, key_value: str, target_column: str) -> Any:
        for row in self._rows(table_name):
            if str(row.get(key_column, "")).strip() == key_value:
                return row.get(target_column)
        return None

    def _query_by_condition(self, table_name: str, where_condition: str, target_column: str) -> Any:
        clauses = parse_equality_condition(where_condition)
        for row in self._rows(table_name):
            if all(str(row.get(column, "")).strip() == value for column, value in clauses):
                return row.get(target_column)
        return None
