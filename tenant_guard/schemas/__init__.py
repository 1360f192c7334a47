from .security import (
    AccessAnalysis,
    AccessCheckRequest,
    AccessDecision,
    AccessEvent,
    AccessPattern,
    ActorContext,
    BlockCreate,
    BlockStatus,
    EnrollmentAttempt,
    EventFilter,
    EventType,
    PatternType,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    ResourceTarget,
    ResourceType,
    SecurityMetrics,
    Severity,
    SuspiciousUser,
    TimeRange,
)

__all__ = [
    "AccessAnalysis",
    "AccessCheckRequest",
    "AccessDecision",
    "AccessEvent",
    "AccessPattern",
    "ActorContext",
    "BlockCreate",
    "BlockStatus",
    "EnrollmentAttempt",
    "EventFilter",
    "EventType",
    "PatternType",
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitResult",
    "ResourceTarget",
    "ResourceType",
    "SecurityMetrics",
    "Severity",
    "SuspiciousUser",
    "TimeRange",
]
