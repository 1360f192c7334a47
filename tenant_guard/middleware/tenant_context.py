# tenant_guard/middleware/tenant_context.py
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
import logging

from tenant_guard.core.roles import Role
from tenant_guard.schemas.security import ActorContext

logger = logging.getLogger(__name__)


class ActorContextMiddleware(BaseHTTPMiddleware):
    """
    Construit l'ActorContext à partir des en-têtes posés par la passerelle
    d'authentification, et le stocke dans request.state.actor
    """

    # Chemins publics (correspondance exacte)
    EXCLUDED_PATHS = ["/", "/health"]
    # Documentation (correspondance par préfixe)
    EXCLUDED_PREFIXES = ["/docs", "/redoc", "/openapi.json"]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.EXCLUDED_PATHS or any(path.startswith(p) for p in self.EXCLUDED_PREFIXES):
            logger.debug(f"Route exclue de la vérification d'acteur: {path}")
            return await call_next(request)

        subject_id = request.headers.get("X-User-ID")
        institution_id = request.headers.get("X-Institution-ID")
        role = request.headers.get("X-User-Role")

        if not subject_id or not institution_id or not role:
            logger.warning(f"Requête sans contexte acteur: {request.method} {path}")
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Contexte acteur manquant",
                    "hint": "Les en-têtes 'X-User-ID', 'X-Institution-ID' et 'X-User-Role' sont requis",
                },
            )

        raw_permissions = request.headers.get("X-User-Permissions", "")
        permissions = frozenset(p.strip() for p in raw_permissions.split(",") if p.strip())

        try:
            actor = ActorContext(
                subject_id=subject_id,
                institution_id=institution_id,
                department_id=request.headers.get("X-Department-ID") or None,
                role=Role(role),
                permissions=permissions,
            )
        except (ValueError, ValidationError):
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Contexte acteur invalide",
                    "hint": f"Rôles acceptés : {', '.join(r.value for r in Role)}",
                },
            )

        request.state.actor = actor
        return await call_next(request)
