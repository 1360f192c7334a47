# tenant_guard/schemas/security.py
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tenant_guard.core.roles import Role
from tenant_guard.core.timeutils import utcnow


# =====================================
# ÉNUMÉRATIONS
# =====================================

class ResourceType(str, Enum):
    INSTITUTION = "institution"
    DEPARTMENT = "department"
    CLASS = "class"
    USER = "user"


class EventType(str, Enum):
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PatternType(str, Enum):
    CROSS_TENANT_ACCESS = "cross_tenant_access"
    RAPID_ACCESS = "rapid_access"
    CRITICAL_VIOLATION = "critical_violation"


# =====================================
# CONTEXTE DE LA REQUÊTE
# =====================================

class ActorContext(BaseModel):
    """Acteur authentifié, immuable pendant toute la requête"""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    institution_id: str
    department_id: Optional[str] = None
    role: Role
    permissions: FrozenSet[str] = frozenset()

    @field_validator("subject_id", "institution_id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("L'identifiant ne peut pas être vide")
        return v


class ResourceTarget(BaseModel):
    """Ressource visée par l'acteur"""
    model_config = ConfigDict(frozen=True)

    resource_type: ResourceType
    institution_id: str
    department_id: Optional[str] = None
    resource_id: str

    @property
    def resource(self) -> str:
        return f"{self.resource_type.value}:{self.resource_id}"


# =====================================
# ÉVÉNEMENTS (journal append-only)
# =====================================

class AccessEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    institution_id: Optional[str] = None
    department_id: Optional[str] = None
    role: Optional[str] = None
    event_type: EventType
    resource: str
    action: str
    target_institution_id: Optional[str] = None
    target_department_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class EventFilter(BaseModel):
    """Filtre de lecture du journal d'événements"""
    subject_id: Optional[str] = None
    institution_id: Optional[str] = None
    event_type: Optional[EventType] = None
    action: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None


class EnrollmentAttempt(BaseModel):
    """Trace forensique d'une tentative d'inscription"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    resource_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    attempt_type: str = "enrollment"
    created_at: datetime = Field(default_factory=utcnow)


# =====================================
# LIMITATION DE DÉBIT
# =====================================

class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_ms: int
    max_attempts: int
    block_duration_ms: int

    @field_validator("window_ms", "max_attempts", "block_duration_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Les paramètres de limitation doivent être positifs")
        return v

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)

    @property
    def block_duration(self) -> timedelta:
        return timedelta(milliseconds=self.block_duration_ms)


class RateLimitEntry(BaseModel):
    """Une ligne par (sujet-ou-ip, action)"""
    key: str
    attempts: int = 0
    window_start: Optional[datetime] = None
    blocked_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RateLimitResult(BaseModel):
    allowed: bool
    remaining_attempts: int
    blocked_until: Optional[datetime] = None


# =====================================
# DÉCISIONS
# =====================================

class AccessDecision(BaseModel):
    allowed: bool
    reason: str
    alert_generated: Optional[bool] = None


class BlockStatus(BaseModel):
    blocked: bool
    reason: Optional[str] = None
    until: Optional[datetime] = None


# =====================================
# ANALYSE
# =====================================

class TimeRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_range(self):
        if self.end < self.start:
            raise ValueError("La fin de la période doit suivre son début")
        return self


class SuspiciousUser(BaseModel):
    user_id: str
    attempt_count: int
    blocked_count: int
    risk_score: int = Field(ge=0, le=100)


class AccessPattern(BaseModel):
    type: PatternType
    description: str = ""
    severity: Severity
    count: int
    user_id: Optional[str] = None


class AccessAnalysis(BaseModel):
    total_attempts: int = 0
    blocked_attempts: int = 0
    suspicious_users: List[SuspiciousUser] = Field(default_factory=list)
    patterns: List[AccessPattern] = Field(default_factory=list)


class SecurityMetrics(BaseModel):
    access_attempts: int
    blocked_attempts: int
    risk_score: int
    security_alerts: int
    top_risky_users: List[SuspiciousUser] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# =====================================
# REQUÊTES API
# =====================================

class AccessCheckRequest(BaseModel):
    target: ResourceTarget
    action: str


class BlockCreate(BaseModel):
    subject_id: str
    institution_id: str
    reason: str
    duration_minutes: int = Field(default=30, gt=0)
