"""
In-memory prompt store.

Selected with DATABASE_URL=memory://. Records live for the lifetime of
the process; useful for local runs and tests.

The store is thread-safe using threading.Lock so it can be shared by
concurrent requests and by the CLI's worker threads alike.
"""

import itertools
import threading

from .base import PromptRecord


class InMemoryPromptStore:
    """
    Thread-safe in-memory PromptStore.

    Identifiers come from a monotonically increasing counter, so
    concurrent saves never collide.

    Example:
        store = InMemoryPromptStore()
        record_id = await store.save(PromptRecord(prompt="Hi", ...))
        records = await store.list_prompts()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[PromptRecord] = []
        self._ids = itertools.count(1)

    async def initialize(self) -> None:
        return None

    async def save(self, record: PromptRecord) -> int:
        with self._lock:
            record_id = next(self._ids)
            self._records.append(record.model_copy(update={"id": record_id}))
        return record_id

    async def list_prompts(self, limit: int | None = None) -> list[PromptRecord]:
        with self._lock:
            records = sorted(self._records, key=lambda r: (r.created_at, r.id))
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def reset(self) -> None:
        """
        Clear all records.

        Primarily used for testing.
        """
        with self._lock:
            self._records.clear()
            self._ids = itertools.count(1)
