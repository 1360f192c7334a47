# tenant_guard/core/rate_limit.py
from enum import Enum
from typing import Dict, Optional, Union

from tenant_guard.schemas.security import RateLimitConfig


class RateLimitAction(str, Enum):
    """Actions soumises à limitation de débit (énumération fermée)"""
    ENROLLMENT_REQUEST = "enrollment_request"
    ENROLLMENT_SUBMISSION = "enrollment_submission"
    WAITLIST_JOIN = "waitlist_join"
    CLASS_SEARCH = "class_search"
    INVITATION_ACCEPT = "invitation_accept"


SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS

# Limites par utilisateur
RATE_LIMIT_CONFIGS: Dict[RateLimitAction, RateLimitConfig] = {
    RateLimitAction.ENROLLMENT_REQUEST: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=5, block_duration_ms=5 * MINUTE_MS
    ),
    RateLimitAction.ENROLLMENT_SUBMISSION: RateLimitConfig(
        window_ms=5 * MINUTE_MS, max_attempts=3, block_duration_ms=15 * MINUTE_MS
    ),
    RateLimitAction.WAITLIST_JOIN: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=3, block_duration_ms=5 * MINUTE_MS
    ),
    RateLimitAction.CLASS_SEARCH: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=30, block_duration_ms=MINUTE_MS
    ),
    RateLimitAction.INVITATION_ACCEPT: RateLimitConfig(
        window_ms=5 * MINUTE_MS, max_attempts=5, block_duration_ms=15 * MINUTE_MS
    ),
}

# Limites par adresse IP (une IP agrège de nombreux utilisateurs)
IP_RATE_LIMIT_CONFIGS: Dict[RateLimitAction, RateLimitConfig] = {
    RateLimitAction.ENROLLMENT_REQUEST: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=50, block_duration_ms=5 * MINUTE_MS
    ),
    RateLimitAction.ENROLLMENT_SUBMISSION: RateLimitConfig(
        window_ms=5 * MINUTE_MS, max_attempts=30, block_duration_ms=15 * MINUTE_MS
    ),
    RateLimitAction.WAITLIST_JOIN: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=30, block_duration_ms=5 * MINUTE_MS
    ),
    RateLimitAction.CLASS_SEARCH: RateLimitConfig(
        window_ms=MINUTE_MS, max_attempts=300, block_duration_ms=MINUTE_MS
    ),
    RateLimitAction.INVITATION_ACCEPT: RateLimitConfig(
        window_ms=5 * MINUTE_MS, max_attempts=50, block_duration_ms=15 * MINUTE_MS
    ),
}


def resolve_action(action: Union[str, RateLimitAction]) -> Optional[RateLimitAction]:
    """Convertit un nom d'action en membre de l'énumération (None si inconnu)"""
    if isinstance(action, RateLimitAction):
        return action
    try:
        return RateLimitAction(action)
    except ValueError:
        return None


def get_rate_limit_config(action: Union[str, RateLimitAction]) -> Optional[RateLimitConfig]:
    """Configuration par utilisateur, None pour une action inconnue"""
    member = resolve_action(action)
    if member is None:
        return None
    return RATE_LIMIT_CONFIGS[member]


def get_ip_rate_limit_config(action: Union[str, RateLimitAction]) -> Optional[RateLimitConfig]:
    """Configuration par IP, None pour une action inconnue"""
    member = resolve_action(action)
    if member is None:
        return None
    return IP_RATE_LIMIT_CONFIGS[member]


def subject_key(subject_id: str, action: str) -> str:
    return f"{subject_id}:{action}"


def ip_key(ip: str, action: str) -> str:
    return f"ip:{ip}:{action}"
