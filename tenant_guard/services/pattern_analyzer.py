# tenant_guard/services/pattern_analyzer.py
import logging
import math
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Tuple

from tenant_guard.core.config import Settings, settings as default_settings
from tenant_guard.core.exceptions import InvalidArgument
from tenant_guard.schemas.security import (
    AccessAnalysis,
    AccessEvent,
    AccessPattern,
    EventFilter,
    EventType,
    PatternType,
    SecurityMetrics,
    Severity,
    SuspiciousUser,
    TimeRange,
)
from tenant_guard.stores.base import EventStore

logger = logging.getLogger(__name__)

ATTEMPT_EVENT_TYPES = {EventType.ACCESS_GRANTED, EventType.ACCESS_DENIED}

# Lectures autorisées des tableaux de bord sécurité : journalisées, hors statistiques
AUDIT_ACTION_PREFIX = "security:"

REVIEW_ACCESS_CONTROLS = "Consider implementing additional access controls"
REVIEW_FLAGGED_USERS = "Review access patterns for flagged users"
IMMEDIATE_REVIEW = "Immediate security review required"


def _percent(part: int, total: int) -> int:
    """Pourcentage arrondi à l'entier le plus proche (0.5 vers le haut)"""
    if total <= 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))


def _is_attempt(event: AccessEvent) -> bool:
    if event.event_type not in ATTEMPT_EVENT_TYPES:
        return False
    return not (event.event_type == EventType.ACCESS_GRANTED and event.action.startswith(AUDIT_ACTION_PREFIX))


class PatternAnalyzer:
    """Analyse du journal d'événements d'une institution"""

    def __init__(self, event_store: EventStore, settings: Settings = None):
        self.event_store = event_store
        self.settings = settings or default_settings

    def analyze_access_patterns(self, institution_id: str, time_range: TimeRange) -> AccessAnalysis:
        if not institution_id or not institution_id.strip():
            raise InvalidArgument("L'identifiant de l'institution est obligatoire")

        events = self.event_store.query_events(EventFilter(
            institution_id=institution_id,
            since=time_range.start,
            until=time_range.end,
        ))

        attempts = [e for e in events if _is_attempt(e)]
        alerts = [e for e in events if e.event_type == EventType.SUSPICIOUS_ACTIVITY]
        blocked = sum(1 for e in attempts if e.event_type == EventType.ACCESS_DENIED)

        patterns = []
        patterns.extend(self._detect_cross_tenant_access(attempts))
        patterns.extend(self._detect_rapid_access(attempts))
        patterns.extend(self._detect_critical_violations(alerts))

        analysis = AccessAnalysis(
            total_attempts=len(attempts),
            blocked_attempts=blocked,
            suspicious_users=self._find_suspicious_users(attempts),
            patterns=patterns,
        )
        logger.info(
            f"Analyse {institution_id}: {analysis.total_attempts} tentatives, "
            f"{analysis.blocked_attempts} refusées, {len(patterns)} motif(s)"
        )
        return analysis

    # =====================================
    # UTILISATEURS SUSPECTS
    # =====================================

    def _find_suspicious_users(self, attempts: List[AccessEvent]) -> List[SuspiciousUser]:
        stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {"total": 0, "blocked": 0})
        for event in attempts:
            stats[event.subject_id]["total"] += 1
            if event.event_type == EventType.ACCESS_DENIED:
                stats[event.subject_id]["blocked"] += 1

        suspicious = []
        for user_id, counts in stats.items():
            # Trop peu d'événements : jamais signalé, quel que soit le ratio
            if counts["total"] < self.settings.SUSPICIOUS_MIN_EVENTS:
                continue
            risk_score = _percent(counts["blocked"], counts["total"])
            if risk_score <= self.settings.SUSPICIOUS_RISK_THRESHOLD:
                continue
            suspicious.append(SuspiciousUser(
                user_id=user_id,
                attempt_count=counts["total"],
                blocked_count=counts["blocked"],
                risk_score=risk_score,
            ))

        suspicious.sort(key=lambda u: (-u.risk_score, -u.attempt_count, u.user_id))
        return suspicious

    # =====================================
    # MOTIFS
    # =====================================

    def _detect_cross_tenant_access(self, attempts: List[AccessEvent]) -> List[AccessPattern]:
        groups: Dict[Tuple[str, str], int] = defaultdict(int)
        for event in attempts:
            if event.event_type != EventType.ACCESS_DENIED:
                continue
            if not event.target_institution_id or event.target_institution_id == event.institution_id:
                continue
            groups[(event.subject_id, event.target_institution_id)] += 1

        patterns = []
        for (subject_id, target_institution_id), count in sorted(groups.items()):
            if count < self.settings.CROSS_TENANT_PATTERN_THRESHOLD:
                continue
            severity = (
                Severity.CRITICAL
                if count >= self.settings.CROSS_TENANT_CRITICAL_THRESHOLD
                else Severity.HIGH
            )
            patterns.append(AccessPattern(
                type=PatternType.CROSS_TENANT_ACCESS,
                description=(
                    f"High volume of cross-tenant access attempts detected "
                    f"({subject_id} -> {target_institution_id})"
                ),
                severity=severity,
                count=count,
                user_id=subject_id,
            ))
        return patterns

    def _detect_rapid_access(self, attempts: List[AccessEvent]) -> List[AccessPattern]:
        """Rafales : RAPID_ACCESS_BURST événements ou plus dans la fenêtre glissante"""
        window = timedelta(seconds=self.settings.RAPID_ACCESS_WINDOW_SECONDS)
        by_user: Dict[str, List] = defaultdict(list)
        for event in attempts:
            by_user[event.subject_id].append(event.timestamp)

        patterns = []
        for user_id in sorted(by_user):
            timestamps = sorted(by_user[user_id])
            densest = 0
            start = 0
            for end in range(len(timestamps)):
                while timestamps[end] - timestamps[start] >= window:
                    start += 1
                densest = max(densest, end - start + 1)

            if densest >= self.settings.RAPID_ACCESS_BURST:
                patterns.append(AccessPattern(
                    type=PatternType.RAPID_ACCESS,
                    description=f"Rapid access attempts detected ({user_id})",
                    severity=Severity.MEDIUM,
                    count=densest,
                    user_id=user_id,
                ))
        return patterns

    @staticmethod
    def _detect_critical_violations(alerts: List[AccessEvent]) -> List[AccessPattern]:
        critical = [a for a in alerts if a.metadata.get("severity") == Severity.CRITICAL.value]
        if not critical:
            return []
        return [AccessPattern(
            type=PatternType.CRITICAL_VIOLATION,
            description="Critical security alerts recorded for this institution",
            severity=Severity.CRITICAL,
            count=len(critical),
        )]

    # =====================================
    # MÉTRIQUES
    # =====================================

    def get_security_metrics(self, institution_id: str, time_range: TimeRange) -> SecurityMetrics:
        analysis = self.analyze_access_patterns(institution_id, time_range)
        risk_score = _percent(analysis.blocked_attempts, analysis.total_attempts)

        # Règles cumulatives : toutes celles qui correspondent s'appliquent
        rules = [
            (risk_score > self.settings.RECOMMENDATION_RISK_THRESHOLD, REVIEW_ACCESS_CONTROLS),
            (len(analysis.suspicious_users) > 0, REVIEW_FLAGGED_USERS),
            (any(p.severity == Severity.CRITICAL for p in analysis.patterns), IMMEDIATE_REVIEW),
        ]

        return SecurityMetrics(
            access_attempts=analysis.total_attempts,
            blocked_attempts=analysis.blocked_attempts,
            risk_score=risk_score,
            security_alerts=len(analysis.patterns),
            top_risky_users=analysis.suspicious_users[:self.settings.TOP_RISKY_USERS_LIMIT],
            recommendations=[message for matched, message in rules if matched],
        )
