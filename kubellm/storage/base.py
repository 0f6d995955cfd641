"""Persisted prompt records and the store contract."""

from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PromptRecord(BaseModel):
    """
    Durable record of one prompt/response exchange.

    `id` is None until a store assigns it; records are never mutated
    after creation (stores return copies carrying the assigned id).
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = Field(default=None, description="Identifier assigned by storage")
    prompt: str = Field(..., description="Prompt text as submitted")
    response: str = Field(..., description="Provider response text")
    model: str = Field(..., max_length=255)
    provider: str = Field(..., max_length=255)
    created_at: datetime = Field(default_factory=utc_now)


class PromptStore(Protocol):
    """
    Persistence gateway used by the orchestrator and front ends.

    `save` is atomic: a record is either fully stored or not at all.
    """

    async def initialize(self) -> None:
        """Create the schema if it does not exist."""
        ...

    async def save(self, record: PromptRecord) -> int:
        """Store a record and return its assigned identifier."""
        ...

    async def list_prompts(self, limit: int | None = None) -> list[PromptRecord]:
        """Return records ordered by creation time, oldest first."""
        ...

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        ...

    async def close(self) -> None:
        ...
