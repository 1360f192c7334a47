# tenant_guard/services/engine.py
import logging
from typing import Optional, Union

from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.rate_limit import RateLimitAction, resolve_action
from tenant_guard.core.roles import Role
from tenant_guard.core.timeutils import Clock, utcnow
from tenant_guard.schemas.security import AccessDecision, ActorContext, ResourceTarget, RateLimitResult
from tenant_guard.services.access_guard import AccessGuard
from tenant_guard.services.block_registry import BlockRegistry
from tenant_guard.services.pattern_analyzer import PatternAnalyzer
from tenant_guard.services.rate_limiter import RateLimiter
from tenant_guard.stores.base import AttemptLog, CounterStore, EventStore

logger = logging.getLogger(__name__)

RATE_LIMITED_REASON = "Access denied: Too many requests"
IP_RATE_LIMITED_REASON = "Access denied: Too many requests from this address"


class TenantSecurityEngine:
    """
    Point d'entrée unique : les quatre composants partagent les mêmes stores.

    authorize() applique le flux complet :
    blocage temporaire -> budget IP -> budget sujet -> garde d'isolation
    """

    def __init__(
        self,
        event_store: EventStore,
        counter_store: CounterStore,
        attempt_log: Optional[AttemptLog] = None,
        settings: Settings = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings or default_settings
        self.event_store = event_store
        self.counter_store = counter_store
        self.attempt_log = attempt_log

        self.rate_limiter = RateLimiter(counter_store, attempt_log, self.settings, clock)
        self.block_registry = BlockRegistry(event_store, self.settings, clock)
        self.access_guard = AccessGuard(event_store, self.block_registry, self.settings, clock)
        self.analyzer = PatternAnalyzer(event_store, self.settings)

    def authorize(
        self,
        actor: ActorContext,
        target: ResourceTarget,
        action: str,
        ip: Optional[str] = None,
        rate_limit_action: Union[str, RateLimitAction, None] = None,
    ) -> AccessDecision:
        """
        Décision complète pour une requête.

        rate_limit_action : action soumise à limitation (par défaut `action`
        si c'est une action connue, sinon aucune limitation).
        """
        # Les administrateurs système ne sont ni bloqués ni limités
        if actor.role != Role.SYSTEM_ADMIN:
            status = self.block_registry.is_user_blocked(actor.subject_id)
            if status.blocked:
                logger.warning(f"Requête refusée, {actor.subject_id} bloqué jusqu'à {status.until.isoformat()}")
                return AccessDecision(
                    allowed=False,
                    reason=f"Access denied: Account temporarily blocked until {status.until.isoformat()}",
                )

            limited = resolve_action(rate_limit_action if rate_limit_action is not None else action)
            if limited is not None:
                if ip:
                    result = self.rate_limiter.check_ip_rate_limit(ip, limited)
                    if not result.allowed:
                        return self._rate_limited(IP_RATE_LIMITED_REASON, result)
                result = self.rate_limiter.check_rate_limit(actor.subject_id, limited)
                if not result.allowed:
                    return self._rate_limited(RATE_LIMITED_REASON, result)

        return self.access_guard.prevent_cross_tenant_access(actor, target, action)

    @staticmethod
    def _rate_limited(reason: str, result: RateLimitResult) -> AccessDecision:
        if result.blocked_until is not None:
            reason = f"{reason}, retry after {result.blocked_until.isoformat()}"
        return AccessDecision(allowed=False, reason=reason)


def build_engine(settings: Settings = None, clock: Clock = utcnow) -> TenantSecurityEngine:
    """Construit le moteur à partir de la configuration (COUNTER_BACKEND)"""
    settings = settings or default_settings
    backend = settings.COUNTER_BACKEND.lower()

    if backend == "memory":
        from tenant_guard.stores.memory import InMemoryAttemptLog, InMemoryCounterStore, InMemoryEventStore

        logger.warning("Stores en mémoire : mono-instance, données perdues au redémarrage")
        return TenantSecurityEngine(
            InMemoryEventStore(), InMemoryCounterStore(), InMemoryAttemptLog(), settings, clock
        )

    from tenant_guard.stores.sql import SqlAttemptLog, SqlCounterStore, SqlEventStore

    if backend == "redis":
        from tenant_guard.stores.redis_store import RedisCounterStore

        counter_store = RedisCounterStore.from_url(
            settings.REDIS_URL,
            retention_seconds=settings.RATE_LIMIT_RETENTION_HOURS * 3600,
        )
    elif backend == "database":
        counter_store = SqlCounterStore()
    else:
        raise ValueError(f"COUNTER_BACKEND inconnu: {settings.COUNTER_BACKEND}")

    logger.info(f"Moteur de sécurité initialisé (compteurs: {backend})")
    return TenantSecurityEngine(SqlEventStore(), counter_store, SqlAttemptLog(), settings, clock)
