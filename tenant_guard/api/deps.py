# tenant_guard/api/deps.py
from fastapi import HTTPException, Request, status

from tenant_guard.core.permissions import SECURITY_MANAGE, SECURITY_VIEW, can_manage_security, can_view_security
from tenant_guard.schemas.security import ActorContext
from tenant_guard.services.engine import TenantSecurityEngine


# ======================================================
# MOTEUR
# ======================================================

def get_engine(request: Request) -> TenantSecurityEngine:
    """Moteur partagé, attaché à l'application par create_app()"""
    return request.app.state.engine


# ======================================================
# ACTEUR
# ======================================================

def get_actor(request: Request) -> ActorContext:
    """Acteur posé par ActorContextMiddleware"""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Contexte acteur absent",
        )
    return actor


# ======================================================
# PERMISSIONS
# ======================================================

def require_security_view(actor: ActorContext) -> ActorContext:
    if not can_view_security(actor.role, actor.permissions):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission requise : {SECURITY_VIEW}",
        )
    return actor


def require_security_manage(actor: ActorContext) -> ActorContext:
    if not can_manage_security(actor.role, actor.permissions):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission requise : {SECURITY_MANAGE}",
        )
    return actor


__all__ = [
    "get_engine",
    "get_actor",
    "require_security_view",
    "require_security_manage",
]
