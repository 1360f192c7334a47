# tenant_guard/models/__init__.py
"""
Modèles persistants du moteur : journal d'événements, compteurs, tentatives
"""
from .security_event import TenantSecurityEvent
from .rate_limit_entry import RateLimitEntryRow
from .enrollment_attempt import EnrollmentAttemptRow

__all__ = [
    "TenantSecurityEvent",
    "RateLimitEntryRow",
    "EnrollmentAttemptRow",
]
