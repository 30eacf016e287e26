"""Immutable event log with SHA-256 hash chain."""

import logging
from datetime import datetime, timezone
from typing import Any

from provenance.core.hashing import canonical_json, compute_event_hash
from provenance.models.event import EventLogEntry, EventType
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)


class EventLog:
    def __init__(self, store: ProvenanceStore, default_limit: int = 100):
        self.store = store
        self.default_limit = default_limit

    def append(self, event_type: EventType, data: dict[str, Any]) -> EventLogEntry:
        previous = self.store.last_event()
        prev_hash = previous.entry_hash if previous else None
        at = datetime.now(timezone.utc)
        entry = EventLogEntry(
            type=event_type,
            at=at,
            data=data,
            prev_hash=prev_hash,
            entry_hash=compute_event_hash(prev_hash, event_type, canonical_json(data), at.isoformat()),
        )
        self.store.append_event(entry)
        logger.debug("Event %s appended: %s", event_type, data.get("action", ""))
        return entry

    def recent(self, limit: int | None = None, event_type: EventType | None = None) -> list[EventLogEntry]:
        """Newest-last slice of the log, optionally restricted to one type."""
        limit = self.default_limit if limit is None else limit
        if event_type is None:
            return self.store.events(limit)
        matching = [e for e in self.store.events() if e.type == event_type]
        return matching[-limit:] if limit > 0 else []

    def verify_chain(self) -> bool:
        """Recompute every link; False if any entry was altered or reordered."""
        prev_hash = None
        for entry in self.store.events():
            if entry.prev_hash != prev_hash:
                return False
            expected = compute_event_hash(
                prev_hash, entry.type, canonical_json(entry.data), entry.at.isoformat(),
            )
            if entry.entry_hash != expected:
                return False
            prev_hash = entry.entry_hash
        return True
