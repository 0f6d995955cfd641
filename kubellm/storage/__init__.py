"""
Storage module: durable prompt records.

Public API:
- PromptRecord: One stored prompt/response exchange
- PromptStore: Protocol every backend implements
- create_prompt_store: Pick a backend from DATABASE_URL
"""

from kubellm.errors import ConfigurationError
from kubellm.storage.base import PromptRecord, PromptStore, utc_now
from kubellm.storage.memory import InMemoryPromptStore
from kubellm.storage.sqlite import ConnectionPool, SqlitePromptStore

SQLITE_PREFIX = "sqlite:///"
MEMORY_URL = "memory://"


def create_prompt_store(
    database_url: str,
    max_connections: int = 10,
    acquire_timeout: float = 5.0,
) -> PromptStore:
    """
    Build the prompt store named by a database URL.

    Args:
        database_url: "sqlite:///<path>" or "memory://"
        max_connections: Pool size for the SQLite backend
        acquire_timeout: Seconds to wait for a pooled connection

    Raises:
        ConfigurationError: If the URL scheme is not supported.
    """
    if database_url == MEMORY_URL:
        return InMemoryPromptStore()
    if database_url.startswith(SQLITE_PREFIX):
        path = database_url[len(SQLITE_PREFIX):]
        if not path:
            raise ConfigurationError("sqlite URL must include a database path")
        return SqlitePromptStore(path, max_connections, acquire_timeout)
    raise ConfigurationError(f"Unsupported database URL: {database_url}")


__all__ = [
    "ConnectionPool",
    "InMemoryPromptStore",
    "PromptRecord",
    "PromptStore",
    "SqlitePromptStore",
    "create_prompt_store",
    "utc_now",
]
