# tenant_guard/main.py
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenant_guard.api.security import router as security_router
from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.exceptions import InvalidArgument, NotFound, StorageUnavailable, UnknownAction
from tenant_guard.core.logging_config import configure_logging
from tenant_guard.middleware.rate_limit_middleware import RateLimitMiddleware
from tenant_guard.middleware.tenant_context import ActorContextMiddleware
from tenant_guard.services.engine import TenantSecurityEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(engine: TenantSecurityEngine = None, settings: Settings = None) -> FastAPI:
    """Application FastAPI autour d'un moteur (construit depuis la config si absent)"""
    settings = settings or (engine.settings if engine else default_settings)
    configure_logging(settings)

    owns_database = engine is None and settings.COUNTER_BACKEND.lower() != "memory"
    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_database:
            from tenant_guard.db.session import init_db
            init_db()
        logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} démarré")
        yield

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Middleware CORS d'abord
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # À ajuster pour la production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Contexte acteur
    app.add_middleware(ActorContextMiddleware)

    # Limitation par IP (exécuté en premier)
    app.add_middleware(RateLimitMiddleware)

    @app.exception_handler(InvalidArgument)
    @app.exception_handler(UnknownAction)
    async def invalid_argument_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Store indisponible ({exc.store}) sur {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporairement indisponible, veuillez réessayer"},
        )

    @app.get("/")
    def root():
        return {"message": f"{settings.APP_NAME} actif"}

    @app.get("/health")
    def health_check():
        """Endpoint de santé pour les load balancers"""
        return {"status": "healthy"}

    app.include_router(security_router)

    return app


app = create_app()
