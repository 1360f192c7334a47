# tenant_guard/stores/base.py
"""
Contrats des collaborateurs de stockage.

Toute implémentation traduit les erreurs de son backend en StorageUnavailable.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from tenant_guard.schemas.security import (
    AccessEvent,
    EnrollmentAttempt,
    EventFilter,
    RateLimitEntry,
)


class EventStore(ABC):
    """Journal append-only des événements d'accès"""

    @abstractmethod
    def append_event(self, event: AccessEvent) -> None:
        ...

    @abstractmethod
    def query_events(self, event_filter: EventFilter) -> List[AccessEvent]:
        """Événements correspondant au filtre, du plus récent au plus ancien"""
        ...


class CounterStore(ABC):
    """Stockage clé/valeur des fenêtres de limitation"""

    @abstractmethod
    def get_entry(self, key: str) -> Optional[RateLimitEntry]:
        ...

    @abstractmethod
    def upsert_entry(self, entry: RateLimitEntry) -> None:
        ...

    @abstractmethod
    def delete_entry(self, key: str) -> None:
        ...

    @abstractmethod
    def delete_entries_older_than(self, timestamp: datetime) -> int:
        """Supprime les lignes dont updated_at < timestamp, renvoie le nombre supprimé"""
        ...


class AttemptLog(ABC):
    """Trace forensique des tentatives d'inscription"""

    @abstractmethod
    def append_attempt(self, attempt: EnrollmentAttempt) -> None:
        ...
