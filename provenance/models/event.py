"""Append-only audit trail entry with SHA-256 hash chain."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

EventType = Literal["mint", "transfer", "stolen", "proof", "listing"]


def utcnow():
    return datetime.now(timezone.utc)


class EventLogEntry(BaseModel):
    type: EventType
    at: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
    prev_hash: str | None = None
    entry_hash: str | None = None

    model_config = {"frozen": True}
