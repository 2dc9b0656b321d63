"""
Keyed Stores
============
Durable keyed storage for checkout sessions and orders. No business rules live
here — the checkout state machine computes every record it writes.

A store is one table of (key → JSON document) rows on a database. Stores
created together share their database, so records in different tables can be
written in one step with put_together():

  Memory (tests, demos)
  ─────────────────────
  MemoryDatabase keeps serialized JSON per table in dicts. Lost on process exit.

  SQLite (reference deployment)
  ─────────────────────────────
  SqliteDatabase wraps one aiosqlite connection. Every write is a single
  transaction: committed when all rows are in, rolled back otherwise.
  Survives restarts.

Both backends serialize on put() and re-validate on get(), so a caller can
never mutate a stored record by holding on to a returned model.

Usage pattern — SQLite:

    async with sqlite_stores() as (sessions, orders):
        service = CheckoutService(catalog, sessions, orders, payments)

Usage pattern — memory:

    sessions, orders = memory_stores()

The stores do not serialize a read-modify-write across calls; CheckoutService
holds a per-session lock around those sequences.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, Protocol, TypeVar

import aiosqlite
from pydantic import BaseModel

from .config import get_db_path
from .models import CheckoutSession, Order

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

SESSIONS_TABLE = "checkout_sessions"
ORDERS_TABLE   = "orders"

Row = tuple[str, str, str]    # (table, key, JSON document)


class KeyedStore(Protocol[M]):
    db: "MemoryDatabase | SqliteDatabase"
    table: str

    async def get(self, key: str) -> M | None: ...

    async def put(self, key: str, value: M) -> None: ...

    async def list(self) -> list[M]: ...


# ── Databases ───────────────────────────────────────────────────────────────

class MemoryDatabase:
    def __init__(self):
        self._tables: dict[str, dict[str, str]] = {}

    def _table(self, table: str) -> dict[str, str]:
        return self._tables.setdefault(table, {})

    async def read(self, table: str, key: str) -> str | None:
        return self._table(table).get(key)

    async def read_all(self, table: str) -> list[str]:
        return list(self._table(table).values())

    async def write(self, rows: list[Row]) -> None:
        # No await between the assignments: other tasks see all rows or none.
        for table, key, raw in rows:
            self._table(table)[key] = raw


class SqliteDatabase:
    """One aiosqlite connection; writes are serialized and transactional."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn  = conn
        self._lock = asyncio.Lock()

    async def create_table(self, table: str) -> None:
        async with self._lock:
            await self.conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} "
                "(id TEXT PRIMARY KEY, data TEXT NOT NULL)"
            )
            await self.conn.commit()

    async def read(self, table: str, key: str) -> str | None:
        async with self._lock:
            async with self.conn.execute(
                f"SELECT data FROM {table} WHERE id = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def read_all(self, table: str) -> list[str]:
        async with self._lock:
            async with self.conn.execute(
                f"SELECT data FROM {table} ORDER BY rowid"
            ) as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def write(self, rows: list[Row]) -> None:
        async with self._lock:
            try:
                for table, key, raw in rows:
                    await self.conn.execute(
                        f"INSERT INTO {table} (id, data) VALUES (?, ?) "
                        "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
                        (key, raw),
                    )
                await self.conn.commit()
            except BaseException:
                logger.warning("[store] Write of %d row(s) failed, rolling back", len(rows))
                await self.conn.rollback()
                raise


# ── Stores ──────────────────────────────────────────────────────────────────

class _Store(Generic[M]):
    def __init__(self, db, table: str, model: type[M]):
        self.db     = db
        self.table  = table
        self._model = model

    async def get(self, key: str) -> M | None:
        raw = await self.db.read(self.table, key)
        if raw is None:
            return None
        return self._model.model_validate_json(raw)

    async def put(self, key: str, value: M) -> None:
        await self.db.write([(self.table, key, value.model_dump_json())])

    async def list(self) -> list[M]:
        return [self._model.model_validate_json(raw) for raw in await self.db.read_all(self.table)]


class MemoryStore(_Store[M]):
    def __init__(self, model: type[M], db: MemoryDatabase | None = None, table: str | None = None):
        super().__init__(db or MemoryDatabase(), table or model.__name__.lower(), model)


class SqliteStore(_Store[M]):
    """One table of (id TEXT PRIMARY KEY, data TEXT) rows on a shared connection."""

    def __init__(self, db: SqliteDatabase, table: str, model: type[M]):
        super().__init__(db, table, model)

    async def setup(self) -> None:
        await self.db.create_table(self.table)


async def put_together(*writes: tuple[KeyedStore, str, BaseModel]) -> None:
    """
    Write (store, key, value) records all-or-nothing.

    The stores must share a database (as the pairs from memory_stores() and
    sqlite_stores() do).
    """
    databases = {id(store.db) for store, _, _ in writes}
    if len(databases) != 1:
        raise ValueError("put_together() needs stores on one database")
    rows = [(store.table, key, value.model_dump_json()) for store, key, value in writes]
    await writes[0][0].db.write(rows)


def memory_stores() -> tuple[MemoryStore[CheckoutSession], MemoryStore[Order]]:
    """Return fresh in-memory (sessions, orders) stores on one database."""
    db = MemoryDatabase()
    return (
        MemoryStore(CheckoutSession, db, SESSIONS_TABLE),
        MemoryStore(Order, db, ORDERS_TABLE),
    )


@asynccontextmanager
async def sqlite_stores(
    db_path: str | None = None,
) -> AsyncIterator[tuple[SqliteStore[CheckoutSession], SqliteStore[Order]]]:
    """
    Open the SQLite file, create the tables if needed, and yield
    (sessions, orders) stores sharing one connection.

    Args:
        db_path: Path to the SQLite file. Defaults to get_db_path().
                 ":memory:" gives SQL semantics without a file (tests).
    """
    path = db_path if db_path is not None else get_db_path()
    logger.info("[store] Opening SQLite store at: %s", path)

    async with aiosqlite.connect(path) as conn:
        db = SqliteDatabase(conn)
        sessions = SqliteStore(db, SESSIONS_TABLE, CheckoutSession)
        orders   = SqliteStore(db, ORDERS_TABLE, Order)
        await sessions.setup()
        await orders.setup()
        logger.info("[store] SQLite store ready")
        yield sessions, orders
