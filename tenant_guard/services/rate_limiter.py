# tenant_guard/services/rate_limiter.py
"""
Limitation de débit par sujet et par IP.

Politique FAIL-OPEN : si le store de compteurs est injoignable en lecture,
la requête est autorisée (disponibilité avant limitation stricte) et
l'erreur est journalisée. Les compteurs sont "best effort" : une mise à jour
perdue sous concurrence est acceptable, aucun verrou distribué n'est pris.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Union

from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.exceptions import InvalidArgument, StorageUnavailable, UnknownAction
from tenant_guard.core.rate_limit import (
    RateLimitAction,
    get_ip_rate_limit_config,
    get_rate_limit_config,
    ip_key,
    subject_key,
)
from tenant_guard.core.timeutils import Clock, utcnow
from tenant_guard.schemas.security import (
    EnrollmentAttempt,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
)
from tenant_guard.stores.base import AttemptLog, CounterStore

logger = logging.getLogger(__name__)

ActionName = Union[str, RateLimitAction]


class RateLimiter:
    """Fenêtres fixes avec blocage temporaire au dépassement"""

    def __init__(
        self,
        counter_store: CounterStore,
        attempt_log: Optional[AttemptLog] = None,
        settings: Settings = None,
        clock: Clock = utcnow,
    ):
        self.counter_store = counter_store
        self.attempt_log = attempt_log
        self.settings = settings or default_settings
        self.clock = clock

    # =====================================
    # CONFIGURATION
    # =====================================

    @staticmethod
    def get_rate_limit_config(action: ActionName) -> Optional[RateLimitConfig]:
        return get_rate_limit_config(action)

    @staticmethod
    def get_ip_rate_limit_config(action: ActionName) -> Optional[RateLimitConfig]:
        return get_ip_rate_limit_config(action)

    @staticmethod
    def _action_name(action: ActionName) -> str:
        if isinstance(action, RateLimitAction):
            return action.value
        if not action or not str(action).strip():
            raise InvalidArgument("L'action est obligatoire")
        return action

    @staticmethod
    def _resolve_config(
        action: str,
        override_config: Optional[RateLimitConfig],
        lookup: Callable[[str], Optional[RateLimitConfig]],
    ) -> RateLimitConfig:
        if override_config is not None:
            return override_config
        config = lookup(action)
        if config is None:
            raise UnknownAction(action)
        return config

    # =====================================
    # VÉRIFICATIONS
    # =====================================

    def check_rate_limit(
        self,
        subject_id: str,
        action: ActionName,
        override_config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Consomme une tentative pour (sujet, action)"""
        if not subject_id or not subject_id.strip():
            raise InvalidArgument("L'identifiant du sujet est obligatoire")
        action = self._action_name(action)
        config = self._resolve_config(action, override_config, get_rate_limit_config)
        return self._check(subject_key(subject_id, action), config)

    def check_ip_rate_limit(
        self,
        ip: str,
        action: ActionName,
        override_config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Même algorithme sur la clé ip:<ip>:<action> avec les limites IP"""
        if not ip or not ip.strip():
            raise InvalidArgument("L'adresse IP est obligatoire")
        action = self._action_name(action)
        config = self._resolve_config(action, override_config, get_ip_rate_limit_config)
        return self._check(ip_key(ip, action), config)

    def _check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self.clock()

        try:
            entry = self.counter_store.get_entry(key)
        except StorageUnavailable as e:
            logger.error(f"Compteur {key} illisible, requête autorisée (fail-open): {e}")
            return RateLimitResult(allowed=True, remaining_attempts=config.max_attempts)

        # Première tentative
        if entry is None:
            return self._start_window(key, config, now)

        # Blocage en cours : aucun compteur ne bouge
        if entry.blocked_until is not None and now < entry.blocked_until:
            return RateLimitResult(
                allowed=False,
                remaining_attempts=0,
                blocked_until=entry.blocked_until,
            )

        # Fenêtre expirée (ou ligne sans début de fenêtre) : nouvelle fenêtre
        if entry.window_start is None or now - entry.window_start > config.window:
            return self._start_window(key, config, now)

        # Fenêtre active sous la limite
        if entry.attempts < config.max_attempts:
            attempts = entry.attempts + 1
            self._persist(entry.model_copy(update={"attempts": attempts, "updated_at": now}))
            return RateLimitResult(
                allowed=True,
                remaining_attempts=config.max_attempts - attempts,
            )

        # Limite atteinte : la (max+1)-ième tentative déclenche le blocage
        blocked_until = now + config.block_duration
        self._persist(entry.model_copy(update={
            "attempts": min(entry.attempts + 1, config.max_attempts + 1),
            "blocked_until": blocked_until,
            "updated_at": now,
        }))
        logger.warning(f"Limite atteinte pour {key}, bloqué jusqu'à {blocked_until.isoformat()}")
        return RateLimitResult(allowed=False, remaining_attempts=0, blocked_until=blocked_until)

    def _start_window(self, key: str, config: RateLimitConfig, now: datetime) -> RateLimitResult:
        self._persist(RateLimitEntry(
            key=key,
            attempts=1,
            window_start=now,
            blocked_until=None,
            updated_at=now,
        ))
        return RateLimitResult(allowed=True, remaining_attempts=config.max_attempts - 1)

    def _persist(self, entry: RateLimitEntry) -> None:
        # La décision est déjà prise : un échec d'écriture ne la change pas
        try:
            self.counter_store.upsert_entry(entry)
        except StorageUnavailable as e:
            logger.error(f"Écriture du compteur {entry.key} impossible: {e}")

    # =====================================
    # ÉTAT ET ADMINISTRATION
    # =====================================

    def get_rate_limit_status(self, subject_id: str) -> Dict[str, RateLimitResult]:
        """État courant de chaque action connue, sans consommer de tentative"""
        if not subject_id or not subject_id.strip():
            raise InvalidArgument("L'identifiant du sujet est obligatoire")

        now = self.clock()
        status = {}
        for action in RateLimitAction:
            config = get_rate_limit_config(action)
            try:
                entry = self.counter_store.get_entry(subject_key(subject_id, action.value))
            except StorageUnavailable as e:
                logger.error(f"Statut {action.value} illisible pour {subject_id}: {e}")
                entry = None
            status[action.value] = self._evaluate(entry, config, now)
        return status

    @staticmethod
    def _evaluate(entry: Optional[RateLimitEntry], config: RateLimitConfig, now: datetime) -> RateLimitResult:
        if entry is None:
            return RateLimitResult(allowed=True, remaining_attempts=config.max_attempts)
        if entry.blocked_until is not None and now < entry.blocked_until:
            return RateLimitResult(allowed=False, remaining_attempts=0, blocked_until=entry.blocked_until)
        if entry.window_start is None or now - entry.window_start > config.window:
            return RateLimitResult(allowed=True, remaining_attempts=config.max_attempts)

        remaining = max(config.max_attempts - entry.attempts, 0)
        return RateLimitResult(allowed=remaining > 0, remaining_attempts=remaining)

    def clear_rate_limit(self, subject_id: str, action: ActionName) -> None:
        """Supprime le compteur (les erreurs de stockage sont propagées)"""
        if not subject_id or not subject_id.strip():
            raise InvalidArgument("L'identifiant du sujet est obligatoire")
        action = self._action_name(action)
        self.counter_store.delete_entry(subject_key(subject_id, action))
        logger.info(f"Compteur {action} réinitialisé pour {subject_id}")

    def record_enrollment_attempt(
        self,
        subject_id: str,
        resource_id: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Trace forensique, ne bloque jamais le flux principal"""
        if self.attempt_log is None:
            logger.debug("Aucun journal de tentatives configuré")
            return
        try:
            self.attempt_log.append_attempt(EnrollmentAttempt(
                subject_id=subject_id,
                resource_id=resource_id,
                ip_address=ip,
                user_agent=user_agent,
                created_at=self.clock(),
            ))
        except Exception as e:
            logger.error(f"Erreur enregistrement tentative d'inscription {subject_id}/{resource_id}: {e}")

    def cleanup_expired_entries(self) -> int:
        """Purge les lignes non mises à jour depuis la rétention configurée"""
        cutoff = self.clock() - timedelta(hours=self.settings.RATE_LIMIT_RETENTION_HOURS)
        try:
            deleted = self.counter_store.delete_entries_older_than(cutoff)
        except Exception as e:
            logger.error(f"Erreur lors du nettoyage des compteurs: {e}")
            return 0
        logger.info(f"{deleted} compteur(s) expiré(s) supprimé(s)")
        return deleted
