"""
SQLite-backed prompt store.

Connections come from a bounded pool shared by all requests. Blocking
sqlite3 calls run in worker threads via asyncio.to_thread so the event
loop never stalls on disk I/O.
"""

import asyncio
import functools
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from kubellm.errors import StorageError

from .base import PromptRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt TEXT NOT NULL,
    response TEXT NOT NULL,
    model VARCHAR(255) NOT NULL,
    provider VARCHAR(255) NOT NULL,
    created_at TEXT NOT NULL
)
"""

INSERT_SQL = (
    "INSERT INTO prompts (prompt, response, model, provider, created_at) "
    "VALUES (?, ?, ?, ?, ?)"
)

SELECT_SQL = (
    "SELECT id, prompt, response, model, provider, created_at "
    "FROM prompts ORDER BY created_at, id"
)


class ConnectionPool:
    """
    Bounded pool of sqlite3 connections.

    At most `max_connections` connections exist at once. A caller that
    cannot get one within `acquire_timeout` seconds fails with
    StorageError instead of waiting forever.
    """

    def __init__(self, path: str, max_connections: int = 10, acquire_timeout: float = 5.0):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.path = path
        self.max_connections = max_connections
        self.acquire_timeout = acquire_timeout
        self._slots = asyncio.Semaphore(max_connections)
        self._idle: asyncio.Queue[sqlite3.Connection] = asyncio.Queue()
        self._closed = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.acquire_timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    async def acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageError("Connection pool is closed")
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError as e:
            raise StorageError(
                f"Timed out after {self.acquire_timeout}s waiting for a database connection"
            ) from e

        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass

        try:
            return await asyncio.to_thread(self._connect)
        except sqlite3.Error as e:
            self._slots.release()
            raise StorageError(f"Could not open database {self.path}: {e}") from e
        except BaseException:
            self._slots.release()
            raise

    def release(self, conn: sqlite3.Connection, discard: bool = False) -> None:
        """Return a connection to the pool, or close it if it is suspect."""
        if discard or self._closed:
            conn.close()
        else:
            self._idle.put_nowait(conn)
        self._slots.release()

    async def run(self, fn, *args):
        """
        Run `fn(conn, *args)` on a pooled connection in a worker thread.

        sqlite3 errors are wrapped in StorageError. A connection whose call
        failed is discarded rather than reused. If the caller is cancelled
        the worker thread keeps the connection until it finishes, and only
        then is the connection closed and its slot freed.
        """
        conn = await self.acquire()
        work = asyncio.ensure_future(asyncio.to_thread(fn, conn, *args))
        try:
            result = await asyncio.shield(work)
        except asyncio.CancelledError:
            work.add_done_callback(functools.partial(self._abandon, conn))
            raise
        except sqlite3.Error as e:
            self.release(conn, discard=True)
            raise StorageError(f"Database error: {e}") from e
        except BaseException:
            self.release(conn, discard=True)
            raise
        self.release(conn)
        return result

    def _abandon(self, conn: sqlite3.Connection, work: asyncio.Future) -> None:
        if not work.cancelled() and work.exception() is not None:
            logger.warning(
                f"Database call finished after its caller was cancelled: {work.exception()}"
            )
        self.release(conn, discard=True)

    async def close(self) -> None:
        self._closed = True
        while not self._idle.empty():
            self._idle.get_nowait().close()


def _create_schema(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(SCHEMA)


def _insert(conn: sqlite3.Connection, record: PromptRecord) -> int:
    with conn:
        cursor = conn.execute(
            INSERT_SQL,
            (
                record.prompt,
                record.response,
                record.model,
                record.provider,
                record.created_at.isoformat(timespec="microseconds"),
            ),
        )
    return cursor.lastrowid


def _select(conn: sqlite3.Connection, limit: int | None) -> list[sqlite3.Row]:
    if limit is None:
        return conn.execute(SELECT_SQL).fetchall()
    # Newest `limit` rows, still returned oldest first
    return conn.execute(
        "SELECT * FROM ("
        "SELECT id, prompt, response, model, provider, created_at FROM prompts "
        "ORDER BY created_at DESC, id DESC LIMIT ?"
        ") ORDER BY created_at, id",
        (limit,),
    ).fetchall()


def _ping(conn: sqlite3.Connection) -> None:
    conn.execute("SELECT 1").fetchone()


class SqlitePromptStore:
    """
    PromptStore persisting to a SQLite database file.

    Example:
        store = SqlitePromptStore("kubellm.db")
        await store.initialize()
        record_id = await store.save(record)
    """

    def __init__(self, path: str, max_connections: int = 10, acquire_timeout: float = 5.0):
        self.path = path
        self._pool = ConnectionPool(path, max_connections, acquire_timeout)

    async def initialize(self) -> None:
        parent = Path(self.path).parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)
        await self._pool.run(_create_schema)
        logger.info(f"Prompt store ready at {self.path}")

    async def save(self, record: PromptRecord) -> int:
        return await self._pool.run(_insert, record)

    async def list_prompts(self, limit: int | None = None) -> list[PromptRecord]:
        if limit is not None and limit <= 0:
            return []
        rows = await self._pool.run(_select, limit)
        return [
            PromptRecord(
                id=row["id"],
                prompt=row["prompt"],
                response=row["response"],
                model=row["model"],
                provider=row["provider"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def ping(self) -> bool:
        try:
            await self._pool.run(_ping)
        except StorageError as e:
            logger.warning(f"Prompt store ping failed: {e}")
            return False
        return True

    async def close(self) -> None:
        await self._pool.close()
