# tenant_guard/middleware/rate_limit_middleware.py
import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Budget par adresse IP sur les chemins sensibles.
    Les compteurs vivent dans le store du moteur (partagé entre instances).
    """

    async def dispatch(self, request: Request, call_next):
        engine = request.app.state.engine
        settings = engine.settings
        path = request.url.path

        if not any(path.startswith(prefix) for prefix in settings.RATE_LIMITED_PATHS):
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        result = await run_in_threadpool(
            engine.rate_limiter.check_ip_rate_limit, ip, settings.RATE_LIMIT_IP_ACTION
        )

        if not result.allowed:
            retry_after = 1
            if result.blocked_until is not None:
                remaining = (result.blocked_until - engine.rate_limiter.clock()).total_seconds()
                retry_after = max(int(math.ceil(remaining)), 1)

            logger.warning(f"Limite IP atteinte: {ip} sur {path}")
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Trop de requêtes. Veuillez réessayer plus tard.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
