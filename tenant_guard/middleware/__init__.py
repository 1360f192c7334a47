from .rate_limit_middleware import RateLimitMiddleware
from .tenant_context import ActorContextMiddleware

__all__ = ["ActorContextMiddleware", "RateLimitMiddleware"]
