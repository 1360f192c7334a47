# tenant_guard/services/block_registry.py
"""
Blocages temporaires, dérivés du journal d'événements.

Il n'existe pas de table de blocage modifiable : chaque blocage est un
événement "temporary_block" et l'état courant est lu sur le plus récent.
"""
import logging
from datetime import timedelta
from typing import Optional

from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.exceptions import InvalidArgument
from tenant_guard.core.timeutils import Clock, parse_timestamp, utcnow
from tenant_guard.schemas.security import AccessEvent, BlockStatus, EventFilter, EventType
from tenant_guard.stores.base import EventStore

logger = logging.getLogger(__name__)

BLOCK_RESOURCE = "user_account"
BLOCK_ACTION = "temporary_block"


class BlockRegistry:

    def __init__(self, event_store: EventStore, settings: Settings = None, clock: Clock = utcnow):
        self.event_store = event_store
        self.settings = settings or default_settings
        self.clock = clock

    def temporary_block_user(
        self,
        subject_id: str,
        institution_id: Optional[str],
        reason: str,
        duration_minutes: Optional[int] = None,
    ) -> AccessEvent:
        """Bloque le sujet pour duration_minutes (une seule écriture append-only)"""
        if not subject_id or not subject_id.strip():
            raise InvalidArgument("L'identifiant du sujet est obligatoire")
        if duration_minutes is None:
            duration_minutes = self.settings.DEFAULT_BLOCK_DURATION_MINUTES
        if duration_minutes <= 0:
            raise InvalidArgument("La durée de blocage doit être positive")

        now = self.clock()
        block_until = now + timedelta(minutes=duration_minutes)

        event = AccessEvent(
            subject_id=subject_id,
            institution_id=institution_id,
            event_type=EventType.ACCESS_DENIED,
            resource=BLOCK_RESOURCE,
            action=BLOCK_ACTION,
            metadata={
                "reason": reason,
                "blockUntil": block_until.isoformat(),
                "durationMinutes": duration_minutes,
            },
            timestamp=now,
        )
        self.event_store.append_event(event)

        logger.warning(f"[USER_BLOCKED] User {subject_id} blocked until {block_until.isoformat()}: {reason}")
        return event

    def is_user_blocked(self, subject_id: str) -> BlockStatus:
        """Lit le blocage le plus récent et le compare à maintenant"""
        if not subject_id or not subject_id.strip():
            raise InvalidArgument("L'identifiant du sujet est obligatoire")

        events = self.event_store.query_events(EventFilter(
            subject_id=subject_id,
            event_type=EventType.ACCESS_DENIED,
            action=BLOCK_ACTION,
            limit=1,
        ))
        if not events:
            return BlockStatus(blocked=False)

        latest = events[0]
        until = parse_timestamp(latest.metadata.get("blockUntil"))
        if until is None:
            logger.warning(f"Blocage {latest.id} sans date de fin exploitable, ignoré")
            return BlockStatus(blocked=False)

        if until <= self.clock():
            return BlockStatus(blocked=False)

        return BlockStatus(blocked=True, reason=latest.metadata.get("reason"), until=until)
