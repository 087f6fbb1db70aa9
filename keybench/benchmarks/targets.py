"""Systems under test: each target turns a variant into operation callbacks."""

from __future__ import annotations

import contextlib
import logging
import random
import threading
from typing import Any, Callable, Dict, Protocol, Sequence

import psycopg2
from docker.models.containers import Container
from psycopg2 import pool as pg_pool

from ..executor import OperationCallback
from ..keys import KeyGenerator, make_generator
from ..sut import DEFAULT_BUFFER_PAGES, DEFAULT_PAGE_CAPACITY, PagedIndex
from ..workload import ConfigurationError, OperationKind
from .docker_control import PostgresManager, TargetError, block_io_bytes

LOGGER = logging.getLogger("keybench.benchmarks.targets")

TARGET_NAMES: tuple[str, ...] = ("memory", "postgres")

_POSTGRES_KEY_TYPES = {
    "bigserial": "BIGSERIAL",
    "uuidv4": "UUID",
    "uuidv7": "UUID",
    "ulid": "UUID",
    "uuidv1": "UUID",
}

LOAD_BATCH_SIZE = 1_000
# One connection per worker thread plus the setup thread; stays under the
# server default of 100.
MAX_CONNECTIONS = 90
MEGABYTE = 1024 * 1024

PoolFactory = Callable[..., Any]


class Target(Protocol):
    variant: str

    def __enter__(self) -> "Target": ...

    def __exit__(self, exc_type, exc, tb) -> None: ...

    def setup(self, initial_dataset: int) -> None: ...

    def reset_stats(self) -> None: ...

    def operations(self) -> Dict[OperationKind, OperationCallback]: ...

    def metrics(self) -> Dict[str, float]: ...


class MemoryTarget:
    """Runs operations against an in-process :class:`PagedIndex`."""

    def __init__(
        self,
        variant: str,
        page_capacity: int = DEFAULT_PAGE_CAPACITY,
        buffer_pages: int = DEFAULT_BUFFER_PAGES,
        seed: int | None = None,
    ) -> None:
        self.variant = variant
        self._page_capacity = page_capacity
        self._buffer_pages = buffer_pages
        self._seed = seed
        self._keys: KeyGenerator = make_generator(variant)
        self._index: PagedIndex | None = None

    def __enter__(self) -> "MemoryTarget":
        self._index = PagedIndex(
            page_capacity=self._page_capacity,
            buffer_pages=self._buffer_pages,
            seed=self._seed,
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._index = None

    @property
    def index(self) -> PagedIndex:
        if self._index is None:
            raise TargetError("memory target used outside its context")
        return self._index

    def setup(self, initial_dataset: int) -> None:
        LOGGER.info("Loading %d %s key(s) into memory index", initial_dataset, self.variant)
        index = self.index
        for _ in range(initial_dataset):
            index.insert(self._keys().sort_key)

    def reset_stats(self) -> None:
        self.index.reset_stats()

    def operations(self) -> Dict[OperationKind, OperationCallback]:
        return {
            OperationKind.INSERT: self._insert,
            OperationKind.READ: self._read,
            OperationKind.UPDATE: self._update,
        }

    def metrics(self) -> Dict[str, float]:
        return self.index.metrics().as_dict()

    def _insert(self, kind: OperationKind, logical_index: int) -> None:
        self.index.insert(self._keys().sort_key)

    def _read(self, kind: OperationKind, logical_index: int) -> None:
        key = self.index.random_key()
        if not self.index.lookup(key):
            raise LookupError(f"key {key} missing from index")

    def _update(self, kind: OperationKind, logical_index: int) -> None:
        self.index.update(self.index.random_key())


class PostgresTarget:
    """Runs operations over pooled psycopg2 connections to a fresh PostgreSQL container.

    Every worker thread keeps its own connection for the whole run, so timed
    operations cost one round trip. ``docker exec`` is used only for
    container-side tooling (``pg_waldump``) while collecting metrics.
    """

    def __init__(
        self,
        variant: str,
        manager: PostgresManager,
        seed: int | None = None,
        max_connections: int = MAX_CONNECTIONS,
        pool_factory: PoolFactory = pg_pool.ThreadedConnectionPool,
    ) -> None:
        if variant not in _POSTGRES_KEY_TYPES:
            raise ConfigurationError(f"variant {variant!r} has no PostgreSQL key type")
        self.variant = variant
        self.table = f"bench_{variant}"
        self.index_name = f"{self.table}_pkey"
        self._manager = manager
        self._max_connections = max_connections
        self._pool_factory = pool_factory
        self._keys: KeyGenerator = make_generator(variant)
        self._values: list[int | str] = []
        self._values_lock = threading.Lock()
        self._rng = random.Random(seed)
        self._stack = contextlib.ExitStack()
        self._container: Container | None = None
        self._pool: Any = None
        self._start_lsn: str | None = None
        self._io_start: tuple[int, int] = (0, 0)

    def __enter__(self) -> "PostgresTarget":
        with contextlib.ExitStack() as stack:
            container = stack.enter_context(self._manager.run(self.variant))
            host, port = self._manager.address(container)
            config = self._manager.config
            LOGGER.info("Connecting to PostgreSQL for %s at %s:%d", self.variant, host, port)
            try:
                pool = self._pool_factory(
                    1,
                    self._max_connections,
                    host=host,
                    port=port,
                    dbname=config.database,
                    user=config.user,
                    password=config.password,
                    connect_timeout=10,
                )
            except psycopg2.Error as exc:
                raise TargetError(f"cannot connect to PostgreSQL at {host}:{port}: {exc}") from exc
            stack.callback(self._release, pool)
            self._container = container
            self._pool = pool
            self._stack = stack.pop_all()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stack.close()

    @property
    def container(self) -> Container:
        if self._container is None:
            raise TargetError("postgres target used outside its context")
        return self._container

    def setup(self, initial_dataset: int) -> None:
        key_type = _POSTGRES_KEY_TYPES[self.variant]
        self.execute("CREATE EXTENSION IF NOT EXISTS pgstattuple")
        self.execute(f"DROP TABLE IF EXISTS {self.table}")
        self.execute(
            f"CREATE TABLE {self.table} (id {key_type} PRIMARY KEY, "
            "payload TEXT NOT NULL, updated_at TIMESTAMPTZ)"
        )
        LOGGER.info("Loading %d %s row(s) into %s", initial_dataset, self.variant, self.table)
        remaining = initial_dataset
        while remaining > 0:
            batch = min(remaining, LOAD_BATCH_SIZE)
            values = [self._keys().value for _ in range(batch)]
            placeholders = ", ".join(["(%s, 'seed')"] * batch)
            self.execute(f"INSERT INTO {self.table} (id, payload) VALUES {placeholders}", values)
            self._remember(values)
            remaining -= batch
        self.execute(f"ANALYZE {self.table}")

    def reset_stats(self) -> None:
        self.execute("SELECT pg_stat_reset()")
        (self._start_lsn,) = self.query_one("SELECT pg_current_wal_lsn()::text")
        self._io_start = block_io_bytes(self.container)

    def operations(self) -> Dict[OperationKind, OperationCallback]:
        return {
            OperationKind.INSERT: self._insert,
            OperationKind.READ: self._read,
            OperationKind.UPDATE: self._update,
        }

    def metrics(self) -> Dict[str, float]:
        density, fragmentation, leaf_pages = self.query_one(
            "SELECT avg_leaf_density, leaf_fragmentation, leaf_pages FROM pgstatindex(%s)",
            (self.index_name,),
        )
        heap_ratio, index_ratio = self.query_one(
            "SELECT COALESCE(heap_blks_hit::float / NULLIF(heap_blks_hit + heap_blks_read, 0), 0), "
            "COALESCE(idx_blks_hit::float / NULLIF(idx_blks_hit + idx_blks_read, 0), 0) "
            "FROM pg_statio_user_tables WHERE relname = %s",
            (self.table,),
        )
        table_bytes, index_bytes = self.query_one(
            "SELECT pg_relation_size(%s), pg_relation_size(%s)",
            (self.table, self.index_name),
        )
        end_lsn, wal_bytes = self.query_one(
            "SELECT pg_current_wal_lsn()::text, pg_wal_lsn_diff(pg_current_wal_lsn(), %s)",
            (self._start_lsn or "0/0",),
        )
        read_bytes, write_bytes = block_io_bytes(self.container)
        return {
            "page_splits": float(self._count_page_splits(end_lsn)),
            "avg_leaf_density": _as_float(density),
            "fragmentation_percent": _as_float(fragmentation),
            "leaf_pages": _as_float(leaf_pages),
            "buffer_hit_ratio": _as_float(heap_ratio),
            "index_buffer_hit_ratio": _as_float(index_ratio),
            "table_size_mb": _as_float(table_bytes) / MEGABYTE,
            "index_size_mb": _as_float(index_bytes) / MEGABYTE,
            "wal_mb": _as_float(wal_bytes) / MEGABYTE,
            "io_read_mb": max(read_bytes - self._io_start[0], 0) / MEGABYTE,
            "io_write_mb": max(write_bytes - self._io_start[1], 0) / MEGABYTE,
        }

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple]:
        """Run one statement on the calling thread's connection; returns its rows."""
        conn = self._connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall() if cursor.description is not None else []
        except psycopg2.Error as exc:
            raise TargetError(f"statement failed on {self.table}: {exc}") from exc

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> tuple:
        rows = self.execute(sql, params)
        if not rows:
            raise TargetError(f"query returned no rows: {sql}")
        return rows[0]

    def _connection(self) -> Any:
        if self._pool is None:
            raise TargetError("postgres target used outside its context")
        try:
            conn = self._pool.getconn(threading.get_ident())
        except psycopg2.Error as exc:
            raise TargetError(f"no connection available: {exc}") from exc
        if not conn.autocommit:
            conn.autocommit = True
        return conn

    def _release(self, pool: Any) -> None:
        self._pool = None
        self._container = None
        with contextlib.suppress(psycopg2.Error):
            pool.closeall()

    def _count_page_splits(self, end_lsn: str) -> int:
        """B-tree split records in the WAL written since :meth:`reset_stats`."""
        wal_dir = f"{self._manager.config.data_dir}/pg_wal"
        if self._start_lsn:
            source = f"-p {wal_dir} -s {self._start_lsn} -e {end_lsn}"
        else:
            source = f"{wal_dir}/[0-9]*"
        result = self.container.exec_run(
            ["sh", "-c", f"pg_waldump {source} 2>/dev/null | grep -c SPLIT || true"]
        )
        output = result.output.decode("utf-8", errors="replace").strip() if result.output else ""
        try:
            return int(output or 0)
        except ValueError:
            LOGGER.warning("Could not count page splits for %s: %r", self.table, output)
            return 0

    def _remember(self, values: list[int | str]) -> None:
        with self._values_lock:
            self._values.extend(values)

    def _random_value(self) -> int | str:
        with self._values_lock:
            if not self._values:
                raise LookupError(f"{self.table} has no rows yet")
            return self._rng.choice(self._values)

    def _insert(self, kind: OperationKind, logical_index: int) -> None:
        value = self._keys().value
        self.execute(
            f"INSERT INTO {self.table} (id, payload) VALUES (%s, %s)",
            (value, f"op-{logical_index}"),
        )
        self._remember([value])

    def _read(self, kind: OperationKind, logical_index: int) -> None:
        value = self._random_value()
        if not self.execute(f"SELECT payload FROM {self.table} WHERE id = %s", (value,)):
            raise LookupError(f"row {value} missing from {self.table}")

    def _update(self, kind: OperationKind, logical_index: int) -> None:
        self.execute(
            f"UPDATE {self.table} SET payload = %s, updated_at = now() WHERE id = %s",
            (f"update-{logical_index}", self._random_value()),
        )


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


TargetFactory = Callable[[str], Target]


def make_target_factory(
    name: str,
    manager: PostgresManager | None = None,
    seed: int | None = None,
) -> TargetFactory:
    if name == "memory":
        return lambda variant: MemoryTarget(variant, seed=seed)
    if name == "postgres":
        if manager is None:
            raise ConfigurationError("the postgres target needs a PostgresManager")
        return lambda variant: PostgresTarget(variant, manager, seed=seed)
    raise ConfigurationError(
        f"unknown target {name!r}; expected one of {', '.join(TARGET_NAMES)}"
    )
