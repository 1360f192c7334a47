from .access_guard import AccessGuard
from .block_registry import BlockRegistry
from .engine import TenantSecurityEngine, build_engine
from .pattern_analyzer import PatternAnalyzer
from .rate_limiter import RateLimiter

__all__ = [
    "AccessGuard",
    "BlockRegistry",
    "PatternAnalyzer",
    "RateLimiter",
    "TenantSecurityEngine",
    "build_engine",
]
