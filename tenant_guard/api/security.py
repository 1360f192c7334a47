# tenant_guard/api/security.py
from datetime import datetime, timedelta
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import ValidationError

from tenant_guard.api.deps import get_actor, get_engine, require_security_manage, require_security_view
from tenant_guard.core.exceptions import UnknownAction
from tenant_guard.core.rate_limit import RateLimitAction, resolve_action
from tenant_guard.core.roles import Role
from tenant_guard.core.timeutils import parse_timestamp
from tenant_guard.schemas.security import (
    AccessAnalysis,
    AccessCheckRequest,
    AccessDecision,
    ActorContext,
    BlockCreate,
    BlockStatus,
    EventFilter,
    RateLimitResult,
    ResourceTarget,
    ResourceType,
    SecurityMetrics,
    TimeRange,
)
from tenant_guard.services.engine import TenantSecurityEngine

router = APIRouter(prefix="/security", tags=["Sécurité"])

DEFAULT_ANALYSIS_HOURS = 24

ENROLLMENT_ACTIONS = {RateLimitAction.ENROLLMENT_REQUEST, RateLimitAction.ENROLLMENT_SUBMISSION}


def _guard_institution(
    engine: TenantSecurityEngine,
    actor: ActorContext,
    institution_id: str,
    action: str,
) -> None:
    """Les endpoints d'administration passent eux-mêmes par la garde d'isolation"""
    decision = engine.access_guard.prevent_cross_tenant_access(
        actor,
        ResourceTarget(
            resource_type=ResourceType.INSTITUTION,
            institution_id=institution_id,
            resource_id=institution_id,
        ),
        action,
    )
    if not decision.allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)


def _subject_institution(engine: TenantSecurityEngine, subject_id: str) -> Optional[str]:
    """Institution du sujet, lue sur son dernier événement journalisé"""
    events = engine.event_store.query_events(EventFilter(subject_id=subject_id, limit=1))
    return events[0].institution_id if events else None


def _guard_subject(
    engine: TenantSecurityEngine,
    actor: ActorContext,
    subject_id: str,
    action: str,
) -> Optional[str]:
    """Un administrateur n'agit que sur les sujets de sa propre institution"""
    institution_id = _subject_institution(engine, subject_id)
    if institution_id is None:
        if actor.role != Role.SYSTEM_ADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Sujet sans institution connue : réservé à l'administration système",
            )
        return None
    _guard_institution(engine, actor, institution_id, action)
    return institution_id


def _time_range(
    engine: TenantSecurityEngine,
    start: Optional[datetime],
    end: Optional[datetime],
) -> TimeRange:
    end = parse_timestamp(end) or engine.rate_limiter.clock()
    start = parse_timestamp(start) or end - timedelta(hours=DEFAULT_ANALYSIS_HOURS)
    try:
        return TimeRange(start=start, end=end)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="La fin de la période doit suivre son début",
        )


# ======================================================
# DÉCISION D'ACCÈS
# ======================================================

@router.post("/access-check", response_model=AccessDecision)
def access_check(
    payload: AccessCheckRequest,
    request: Request,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    """Décision complète : blocage, budget du sujet, isolation"""
    # Le budget IP est déjà appliqué par RateLimitMiddleware sur ce chemin
    decision = engine.authorize(actor, payload.target, payload.action)

    if resolve_action(payload.action) in ENROLLMENT_ACTIONS and payload.target.resource_type == ResourceType.CLASS:
        engine.rate_limiter.record_enrollment_attempt(
            actor.subject_id,
            payload.target.resource_id,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
        )

    return decision


# ======================================================
# BLOCAGES
# ======================================================

@router.get("/blocks/{subject_id}", response_model=BlockStatus)
def get_block_status(
    subject_id: str,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    """État de blocage (le sujet lui-même ou un administrateur sécurité)"""
    if subject_id != actor.subject_id:
        require_security_view(actor)
        _guard_subject(engine, actor, subject_id, "security:view_block")
    return engine.block_registry.is_user_blocked(subject_id)


@router.post("/blocks", response_model=BlockStatus, status_code=status.HTTP_201_CREATED)
def create_block(
    payload: BlockCreate,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    """Bloque temporairement un utilisateur de l'institution"""
    require_security_manage(actor)
    _guard_institution(engine, actor, payload.institution_id, "security:block_user")
    # Le blocage s'applique au sujet partout : c'est son institution qui compte
    institution_id = _guard_subject(engine, actor, payload.subject_id, "security:block_user")

    event = engine.block_registry.temporary_block_user(
        payload.subject_id,
        institution_id or payload.institution_id,
        reason=payload.reason,
        duration_minutes=payload.duration_minutes,
    )
    return BlockStatus(
        blocked=True,
        reason=payload.reason,
        until=parse_timestamp(event.metadata.get("blockUntil")),
    )


# ======================================================
# LIMITATION DE DÉBIT
# ======================================================

@router.get("/rate-limits/{subject_id}", response_model=Dict[str, RateLimitResult])
def get_rate_limit_status(
    subject_id: str,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    if subject_id != actor.subject_id:
        require_security_view(actor)
        _guard_subject(engine, actor, subject_id, "security:view_rate_limits")
    return engine.rate_limiter.get_rate_limit_status(subject_id)


@router.delete("/rate-limits/{subject_id}/{action}", status_code=status.HTTP_204_NO_CONTENT)
def clear_rate_limit(
    subject_id: str,
    action: str,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    """Réinitialise un compteur (support / administration)"""
    require_security_manage(actor)
    if resolve_action(action) is None:
        raise UnknownAction(action)
    _guard_subject(engine, actor, subject_id, "security:clear_rate_limit")
    engine.rate_limiter.clear_rate_limit(subject_id, action)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ======================================================
# ANALYSE
# ======================================================

@router.get("/institutions/{institution_id}/patterns", response_model=AccessAnalysis)
def get_access_patterns(
    institution_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    require_security_view(actor)
    _guard_institution(engine, actor, institution_id, "security:analyze")
    return engine.analyzer.analyze_access_patterns(institution_id, _time_range(engine, start, end))


@router.get("/institutions/{institution_id}/metrics", response_model=SecurityMetrics)
def get_security_metrics(
    institution_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    actor: ActorContext = Depends(get_actor),
    engine: TenantSecurityEngine = Depends(get_engine),
):
    require_security_view(actor)
    _guard_institution(engine, actor, institution_id, "security:metrics")
    return engine.analyzer.get_security_metrics(institution_id, _time_range(engine, start, end))
