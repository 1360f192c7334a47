# tenant_guard/stores/memory.py
"""
Stores en mémoire (développement / tests).
ATTENTION : mono-instance, données perdues au redémarrage.
"""
import threading
from datetime import datetime
from typing import Dict, List, Optional

from tenant_guard.core.timeutils import ensure_utc
from tenant_guard.schemas.security import (
    AccessEvent,
    EnrollmentAttempt,
    EventFilter,
    RateLimitEntry,
)
from tenant_guard.stores.base import AttemptLog, CounterStore, EventStore


def _matches(event: AccessEvent, event_filter: EventFilter) -> bool:
    if event_filter.subject_id is not None and event.subject_id != event_filter.subject_id:
        return False
    if event_filter.institution_id is not None and event.institution_id != event_filter.institution_id:
        return False
    if event_filter.event_type is not None and event.event_type != event_filter.event_type:
        return False
    if event_filter.action is not None and event.action != event_filter.action:
        return False
    timestamp = ensure_utc(event.timestamp)
    if event_filter.since is not None and timestamp < ensure_utc(event_filter.since):
        return False
    if event_filter.until is not None and timestamp > ensure_utc(event_filter.until):
        return False
    return True


class InMemoryEventStore(EventStore):

    def __init__(self):
        self._events: List[AccessEvent] = []
        self.lock = threading.Lock()

    def append_event(self, event: AccessEvent) -> None:
        with self.lock:
            self._events.append(event)

    def query_events(self, event_filter: EventFilter) -> List[AccessEvent]:
        with self.lock:
            # Parcours inversé : à horodatage égal, le plus récent inséré sort en premier
            matching = [e for e in reversed(self._events) if _matches(e, event_filter)]
        matching = sorted(matching, key=lambda e: ensure_utc(e.timestamp), reverse=True)
        if event_filter.limit is not None:
            matching = matching[:event_filter.limit]
        return matching

    @property
    def events(self) -> List[AccessEvent]:
        with self.lock:
            return list(self._events)


class InMemoryCounterStore(CounterStore):

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}
        self.lock = threading.Lock()

    def get_entry(self, key: str) -> Optional[RateLimitEntry]:
        with self.lock:
            entry = self._entries.get(key)
            return entry.model_copy() if entry else None

    def upsert_entry(self, entry: RateLimitEntry) -> None:
        with self.lock:
            self._entries[entry.key] = entry.model_copy()

    def delete_entry(self, key: str) -> None:
        with self.lock:
            self._entries.pop(key, None)

    def delete_entries_older_than(self, timestamp: datetime) -> int:
        cutoff = ensure_utc(timestamp)
        with self.lock:
            stale = [
                key for key, entry in self._entries.items()
                if entry.updated_at is not None and ensure_utc(entry.updated_at) < cutoff
            ]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self):
        with self.lock:
            return len(self._entries)


class InMemoryAttemptLog(AttemptLog):

    def __init__(self):
        self.attempts: List[EnrollmentAttempt] = []
        self.lock = threading.Lock()

    def append_attempt(self, attempt: EnrollmentAttempt) -> None:
        with self.lock:
            self.attempts.append(attempt)
