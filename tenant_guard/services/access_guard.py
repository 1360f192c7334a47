# tenant_guard/services/access_guard.py
"""
Garde d'isolation tenant / département, invoquée sur chaque opération
franchissant une frontière.

Politique FAIL-CLOSED : une erreur de stockage dans le chemin de décision
(lecture de l'historique pour l'escalade) est propagée à l'appelant. Seules
les écritures purement forensiques (journal de la décision, alerte,
blocage automatique) sont journalisées puis ignorées en cas d'échec.
"""
import json
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.exceptions import InvalidArgument
from tenant_guard.core.permissions import CROSS_DEPARTMENT_ACCESS
from tenant_guard.core.roles import Role
from tenant_guard.core.timeutils import Clock, utcnow
from tenant_guard.schemas.security import (
    AccessDecision,
    AccessEvent,
    ActorContext,
    EventFilter,
    EventType,
    ResourceTarget,
    ResourceType,
    Severity,
)
from tenant_guard.services.block_registry import BLOCK_ACTION, BlockRegistry
from tenant_guard.stores.base import EventStore

logger = logging.getLogger(__name__)

SYSTEM_ADMIN_REASON = "System admin access"
ACCESS_GRANTED_REASON = "Access granted"
CROSS_TENANT_DENIED_REASON = "Access denied: Cannot access resources from other institutions"
CROSS_DEPARTMENT_DENIED_REASON = "Access denied: Cannot access resources from other departments"

ALERT_RESOURCE = "security_alert"
ALERT_ACTION = "alert_generated"

CROSS_TENANT_ALERT = "cross_tenant_access"
CROSS_DEPARTMENT_ALERT = "cross_department_access"
CRITICAL_VIOLATION_ALERT = "critical_violation"


class AccessGuard:

    def __init__(
        self,
        event_store: EventStore,
        block_registry: Optional[BlockRegistry] = None,
        settings: Settings = None,
        clock: Clock = utcnow,
    ):
        self.event_store = event_store
        self.block_registry = block_registry
        self.settings = settings or default_settings
        self.clock = clock

    def prevent_cross_tenant_access(
        self,
        actor: ActorContext,
        target: ResourceTarget,
        action: str,
    ) -> AccessDecision:
        """
        Décide si l'acteur peut effectuer `action` sur `target`.

        1. system_admin : toujours autorisé, aucun événement écrit
        2. autre institution : refusé, escalade possible
        3. ressource de département : admin d'institution, même département
           ou permission cross_department_access, sinon refusé
        4. sinon autorisé
        """
        if not action or not action.strip():
            raise InvalidArgument("L'action est obligatoire")

        if actor.role == Role.SYSTEM_ADMIN:
            return AccessDecision(allowed=True, reason=SYSTEM_ADMIN_REASON)

        if target.institution_id != actor.institution_id:
            return self._deny(actor, target, action, CROSS_TENANT_DENIED_REASON, CROSS_TENANT_ALERT)

        if target.resource_type == ResourceType.DEPARTMENT and not self._can_access_department(actor, target):
            return self._deny(actor, target, action, CROSS_DEPARTMENT_DENIED_REASON, CROSS_DEPARTMENT_ALERT)

        self._record(actor, target, action, EventType.ACCESS_GRANTED, ACCESS_GRANTED_REASON)
        return AccessDecision(allowed=True, reason=ACCESS_GRANTED_REASON)

    @staticmethod
    def _can_access_department(actor: ActorContext, target: ResourceTarget) -> bool:
        if actor.role == Role.INSTITUTION_ADMIN:
            return True
        # Ressource de département sans département précisé : aucune frontière franchie
        if target.department_id is None:
            return True
        if actor.department_id == target.department_id:
            return True
        return CROSS_DEPARTMENT_ACCESS in actor.permissions

    # =====================================
    # JOURNALISATION
    # =====================================

    def _record(
        self,
        actor: ActorContext,
        target: ResourceTarget,
        action: str,
        event_type: EventType,
        reason: str,
    ) -> AccessEvent:
        event = AccessEvent(
            subject_id=actor.subject_id,
            institution_id=actor.institution_id,
            department_id=actor.department_id,
            role=actor.role.value,
            event_type=event_type,
            resource=target.resource,
            action=action,
            target_institution_id=target.institution_id,
            target_department_id=target.department_id,
            metadata={
                "blocked": event_type == EventType.ACCESS_DENIED,
                "reason": reason,
            },
            timestamp=self.clock(),
        )
        try:
            self.event_store.append_event(event)
        except Exception as e:
            logger.error(f"Échec de journalisation de l'accès {event.id} ({event_type.value}): {e}")
        return event

    def _deny(
        self,
        actor: ActorContext,
        target: ResourceTarget,
        action: str,
        reason: str,
        alert_type: str,
    ) -> AccessDecision:
        logger.warning(f"Accès refusé: {actor.subject_id} ({actor.institution_id}) -> {target.resource} [{action}]")
        event = self._record(actor, target, action, EventType.ACCESS_DENIED, reason)
        alert_generated = self._check_for_security_alert(actor, event, alert_type)
        return AccessDecision(allowed=False, reason=reason, alert_generated=alert_generated)

    # =====================================
    # ESCALADE
    # =====================================

    def _check_for_security_alert(self, actor: ActorContext, event: AccessEvent, alert_type: str) -> bool:
        """Alerte si le sujet cumule assez de refus récents avant celui-ci"""
        window = timedelta(minutes=self.settings.ESCALATION_WINDOW_MINUTES)
        recent = self.event_store.query_events(EventFilter(
            subject_id=actor.subject_id,
            event_type=EventType.ACCESS_DENIED,
            since=event.timestamp - window,
        ))
        prior = [e for e in recent if e.id != event.id and e.action != BLOCK_ACTION]

        if len(prior) < self.settings.ESCALATION_THRESHOLD:
            return False

        severity = (
            Severity.CRITICAL
            if len(prior) > self.settings.CRITICAL_ESCALATION_THRESHOLD
            else Severity.HIGH
        )
        self.log_security_alert(
            subject_id=actor.subject_id,
            institution_id=actor.institution_id,
            severity=severity,
            alert_type=alert_type,
            description=f"User {actor.subject_id} accumulated {len(prior) + 1} denied access attempts",
            affected_resources=[e.resource for e in prior] + [event.resource],
            metadata={
                "attemptCount": len(prior) + 1,
                "timeWindowMinutes": self.settings.ESCALATION_WINDOW_MINUTES,
                "latestAttempt": event.id,
            },
        )

        if severity == Severity.CRITICAL and self.settings.AUTO_BLOCK_ON_CRITICAL:
            self._auto_block(actor)

        return True

    def _auto_block(self, actor: ActorContext) -> None:
        if self.block_registry is None:
            return
        try:
            if self.block_registry.is_user_blocked(actor.subject_id).blocked:
                return
            self.block_registry.temporary_block_user(
                actor.subject_id,
                actor.institution_id,
                reason="Automatic block after critical security alert",
                duration_minutes=self.settings.AUTO_BLOCK_DURATION_MINUTES,
            )
        except Exception as e:
            logger.error(f"Blocage automatique impossible pour {actor.subject_id}: {e}")

    def log_security_alert(
        self,
        subject_id: str,
        institution_id: Optional[str],
        severity: Severity,
        alert_type: str,
        description: str,
        affected_resources: List[str] = None,
        metadata: Dict[str, Any] = None,
    ) -> AccessEvent:
        """
        Écrit une alerte de sécurité (événement suspicious_activity).

        Utilisée par l'escalade et par les opérateurs pour consigner des
        constats administratifs (ex: critical_violation).
        """
        alert_id = str(uuid.uuid4())
        event = AccessEvent(
            subject_id=subject_id,
            institution_id=institution_id,
            event_type=EventType.SUSPICIOUS_ACTIVITY,
            resource=ALERT_RESOURCE,
            action=ALERT_ACTION,
            metadata={
                "alertId": alert_id,
                "severity": severity.value,
                "type": alert_type,
                "description": description,
                "affectedResources": affected_resources or [],
                "metadata": metadata or {},
            },
            timestamp=self.clock(),
        )

        logger.warning(f"[SECURITY_ALERT] {json.dumps(event.metadata, default=str)}")

        try:
            self.event_store.append_event(event)
        except Exception as e:
            logger.error(f"Échec d'enregistrement de l'alerte {alert_id}: {e}")
        return event
