from datetime import timedelta

import pytest

from tenant_guard.core.exceptions import InvalidArgument, StorageUnavailable
from tenant_guard.schemas.security import AccessEvent, EventType, PatternType, Severity, TimeRange
from tenant_guard.services.access_guard import CRITICAL_VIOLATION_ALERT, AccessGuard
from tenant_guard.services.pattern_analyzer import (
    IMMEDIATE_REVIEW,
    REVIEW_ACCESS_CONTROLS,
    REVIEW_FLAGGED_USERS,
    PatternAnalyzer,
)

from conftest import FailingEventStore


@pytest.fixture
def analyzer(event_store, settings):
    return PatternAnalyzer(event_store, settings)


@pytest.fixture
def time_range(clock):
    return TimeRange(start=clock() - timedelta(days=1), end=clock() + timedelta(days=1))


def add_events(event_store, start, subject_id, count, event_type, spacing=timedelta(minutes=1),
               institution_id="inst-a", target_institution_id="inst-a"):
    for i in range(count):
        event_store.append_event(AccessEvent(
            subject_id=subject_id,
            institution_id=institution_id,
            event_type=event_type,
            resource=f"class:{i}",
            action="read",
            target_institution_id=target_institution_id,
            timestamp=start + spacing * i,
        ))


class TestSuspiciousUsers:

    def test_eight_of_ten_denied(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 8, EventType.ACCESS_DENIED)
        add_events(event_store, clock() - timedelta(hours=1), "user-1", 2, EventType.ACCESS_GRANTED)

        analysis = analyzer.analyze_access_patterns("inst-a", time_range)

        assert analysis.total_attempts == 10
        assert analysis.blocked_attempts == 8
        assert len(analysis.suspicious_users) == 1
        user = analysis.suspicious_users[0]
        assert user.user_id == "user-1"
        assert user.risk_score == 80
        assert user.attempt_count == 10
        assert user.blocked_count == 8

    def test_low_volume_is_never_flagged(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 9, EventType.ACCESS_DENIED)
        assert analyzer.analyze_access_patterns("inst-a", time_range).suspicious_users == []

    def test_half_denied_is_not_flagged(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 5, EventType.ACCESS_DENIED)
        add_events(event_store, clock() - timedelta(hours=1), "user-1", 5, EventType.ACCESS_GRANTED)
        assert analyzer.analyze_access_patterns("inst-a", time_range).suspicious_users == []

    def test_risk_score_rounds_half_up(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 8, EventType.ACCESS_DENIED)
        add_events(event_store, clock() - timedelta(hours=1), "user-1", 4, EventType.ACCESS_GRANTED)
        assert analyzer.analyze_access_patterns("inst-a", time_range).suspicious_users[0].risk_score == 67

    def test_sorted_by_risk(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-low", 6, EventType.ACCESS_DENIED)
        add_events(event_store, clock() - timedelta(hours=1), "user-low", 4, EventType.ACCESS_GRANTED)
        add_events(event_store, clock(), "user-high", 10, EventType.ACCESS_DENIED)

        users = analyzer.analyze_access_patterns("inst-a", time_range).suspicious_users
        assert [u.user_id for u in users] == ["user-high", "user-low"]
        assert [u.risk_score for u in users] == [100, 60]

    def test_other_institutions_and_period_are_excluded(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 10, EventType.ACCESS_DENIED, institution_id="inst-b")
        add_events(event_store, clock() - timedelta(days=3), "user-2", 10, EventType.ACCESS_DENIED)

        analysis = analyzer.analyze_access_patterns("inst-a", time_range)
        assert analysis.total_attempts == 0
        assert analysis.suspicious_users == []


class TestPatterns:

    def test_fifteen_cross_tenant_denials(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 15, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-b")

        patterns = analyzer.analyze_access_patterns("inst-a", time_range).patterns

        assert len(patterns) == 1
        assert patterns[0].type == PatternType.CROSS_TENANT_ACCESS
        assert patterns[0].severity == Severity.HIGH
        assert patterns[0].count == 15
        assert patterns[0].user_id == "user-1"

    def test_fourteen_cross_tenant_denials_are_not_a_pattern(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 14, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-b")
        assert analyzer.analyze_access_patterns("inst-a", time_range).patterns == []

    def test_fifty_cross_tenant_denials_are_critical(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 50, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-b")
        patterns = analyzer.analyze_access_patterns("inst-a", time_range).patterns
        assert [(p.type, p.severity) for p in patterns] == [(PatternType.CROSS_TENANT_ACCESS, Severity.CRITICAL)]

    def test_cross_tenant_grouped_by_target(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 8, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-b")
        add_events(event_store, clock() - timedelta(hours=2), "user-1", 8, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-c")
        assert analyzer.analyze_access_patterns("inst-a", time_range).patterns == []

    def test_rapid_access_burst(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 10, EventType.ACCESS_GRANTED, spacing=timedelta(seconds=5))

        patterns = analyzer.analyze_access_patterns("inst-a", time_range).patterns

        assert len(patterns) == 1
        assert patterns[0].type == PatternType.RAPID_ACCESS
        assert patterns[0].severity == Severity.MEDIUM
        assert patterns[0].count == 10
        assert patterns[0].user_id == "user-1"

    def test_spread_out_access_is_not_rapid(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 10, EventType.ACCESS_GRANTED, spacing=timedelta(seconds=7))
        assert analyzer.analyze_access_patterns("inst-a", time_range).patterns == []

    def test_dashboard_reads_are_not_attempts(self, analyzer, event_store, clock, time_range):
        for i in range(12):
            event_store.append_event(AccessEvent(
                subject_id="admin-1",
                institution_id="inst-a",
                event_type=EventType.ACCESS_GRANTED,
                resource="institution:inst-a",
                action="security:metrics",
                target_institution_id="inst-a",
                timestamp=clock() + timedelta(seconds=i),
            ))

        analysis = analyzer.analyze_access_patterns("inst-a", time_range)

        assert analysis.total_attempts == 0
        assert analysis.patterns == []

    def test_denied_dashboard_reads_still_count(self, analyzer, event_store, clock, time_range):
        event_store.append_event(AccessEvent(
            subject_id="admin-1",
            institution_id="inst-a",
            event_type=EventType.ACCESS_DENIED,
            resource="institution:inst-b",
            action="security:analyze",
            target_institution_id="inst-b",
            timestamp=clock(),
        ))
        analysis = analyzer.analyze_access_patterns("inst-a", time_range)
        assert (analysis.total_attempts, analysis.blocked_attempts) == (1, 1)

    def test_critical_alerts_surface_as_violation(self, analyzer, event_store, settings, clock, time_range):
        guard = AccessGuard(event_store, settings=settings, clock=clock)
        guard.log_security_alert("user-1", "inst-a", Severity.CRITICAL, CRITICAL_VIOLATION_ALERT, "fuite")
        guard.log_security_alert("user-2", "inst-a", Severity.HIGH, "cross_tenant_access", "répétitions")

        analysis = analyzer.analyze_access_patterns("inst-a", time_range)

        assert analysis.total_attempts == 0
        assert len(analysis.patterns) == 1
        assert analysis.patterns[0].type == PatternType.CRITICAL_VIOLATION
        assert analysis.patterns[0].severity == Severity.CRITICAL
        assert analysis.patterns[0].count == 1


class TestSecurityMetrics:

    def test_quiet_institution(self, analyzer, time_range):
        metrics = analyzer.get_security_metrics("inst-a", time_range)
        assert metrics.access_attempts == 0
        assert metrics.risk_score == 0
        assert metrics.security_alerts == 0
        assert metrics.recommendations == []

    def test_recommendations_accumulate(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 50, EventType.ACCESS_DENIED,
                   spacing=timedelta(minutes=5), target_institution_id="inst-b")

        metrics = analyzer.get_security_metrics("inst-a", time_range)

        assert metrics.risk_score == 100
        assert metrics.security_alerts == 1
        assert metrics.recommendations == [REVIEW_ACCESS_CONTROLS, REVIEW_FLAGGED_USERS, IMMEDIATE_REVIEW]

    def test_moderate_risk_only_suggests_controls(self, analyzer, event_store, clock, time_range):
        add_events(event_store, clock(), "user-1", 3, EventType.ACCESS_DENIED)
        add_events(event_store, clock() - timedelta(hours=1), "user-1", 7, EventType.ACCESS_GRANTED)

        metrics = analyzer.get_security_metrics("inst-a", time_range)

        assert metrics.risk_score == 30
        assert metrics.recommendations == [REVIEW_ACCESS_CONTROLS]

    def test_top_risky_users_are_capped(self, analyzer, event_store, clock, time_range):
        for i in range(7):
            add_events(event_store, clock() + timedelta(hours=i), f"user-{i}", 10 + i, EventType.ACCESS_DENIED)

        metrics = analyzer.get_security_metrics("inst-a", time_range)

        assert len(metrics.top_risky_users) == 5
        assert [u.user_id for u in metrics.top_risky_users] == ["user-6", "user-5", "user-4", "user-3", "user-2"]


class TestErrors:

    def test_empty_institution(self, analyzer, time_range):
        with pytest.raises(InvalidArgument):
            analyzer.analyze_access_patterns("", time_range)

    def test_storage_errors_propagate(self, settings, time_range):
        with pytest.raises(StorageUnavailable):
            PatternAnalyzer(FailingEventStore(), settings).get_security_metrics("inst-a", time_range)

    def test_time_range_must_be_ordered(self, clock):
        with pytest.raises(ValueError):
            TimeRange(start=clock(), end=clock() - timedelta(seconds=1))
