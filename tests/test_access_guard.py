from datetime import timedelta

import pytest

from tenant_guard.core.exceptions import InvalidArgument, StorageUnavailable
from tenant_guard.core.permissions import CROSS_DEPARTMENT_ACCESS
from tenant_guard.core.roles import Role
from tenant_guard.schemas.security import EventFilter, EventType, ResourceType, Severity
from tenant_guard.services.access_guard import (
    ACCESS_GRANTED_REASON,
    CRITICAL_VIOLATION_ALERT,
    CROSS_DEPARTMENT_DENIED_REASON,
    CROSS_TENANT_DENIED_REASON,
    AccessGuard,
)
from tenant_guard.services.block_registry import BlockRegistry

from conftest import FailingEventStore, UnreadableEventStore, make_actor, make_target


@pytest.fixture
def registry(event_store, settings, clock):
    return BlockRegistry(event_store, settings, clock)


@pytest.fixture
def guard(event_store, registry, settings, clock):
    return AccessGuard(event_store, registry, settings, clock)


def alerts(event_store):
    return [e for e in event_store.events if e.event_type == EventType.SUSPICIOUS_ACTIVITY]


class TestIsolationRules:

    def test_system_admin_always_allowed(self, guard, event_store):
        actor = make_actor(role=Role.SYSTEM_ADMIN, institution_id="inst-root")
        for institution in ("inst-a", "inst-b", "inst-z"):
            decision = guard.prevent_cross_tenant_access(actor, make_target(institution_id=institution), "read")
            assert decision.allowed is True
        assert event_store.events == []

    def test_same_institution_is_granted_and_logged(self, guard, event_store):
        decision = guard.prevent_cross_tenant_access(make_actor(), make_target(), "read")

        assert decision.allowed is True
        assert decision.reason == ACCESS_GRANTED_REASON
        assert len(event_store.events) == 1
        assert event_store.events[0].event_type == EventType.ACCESS_GRANTED

    def test_cross_tenant_is_denied(self, guard, event_store):
        decision = guard.prevent_cross_tenant_access(make_actor(), make_target(institution_id="inst-b"), "read")

        assert decision.allowed is False
        assert decision.reason == CROSS_TENANT_DENIED_REASON
        assert decision.alert_generated is False
        event = event_store.events[0]
        assert event.event_type == EventType.ACCESS_DENIED
        assert event.target_institution_id == "inst-b"
        assert event.resource == "class:res-1"

    def test_institution_admin_bypasses_departments(self, guard):
        actor = make_actor(role=Role.INSTITUTION_ADMIN, department_id="dept-y")
        target = make_target(resource_type=ResourceType.DEPARTMENT, department_id="dept-x")
        assert guard.prevent_cross_tenant_access(actor, target, "read").allowed is True

    def test_institution_admin_cannot_cross_tenants(self, guard):
        actor = make_actor(role=Role.INSTITUTION_ADMIN)
        target = make_target(institution_id="inst-b")
        assert guard.prevent_cross_tenant_access(actor, target, "read").allowed is False

    def test_teacher_blocked_from_other_department(self, guard):
        target = make_target(resource_type=ResourceType.DEPARTMENT, department_id="dept-x")

        denied = guard.prevent_cross_tenant_access(make_actor(department_id="dept-y"), target, "read")
        assert denied.allowed is False
        assert denied.reason == CROSS_DEPARTMENT_DENIED_REASON

        actor = make_actor(department_id="dept-y", permissions=[CROSS_DEPARTMENT_ACCESS])
        assert guard.prevent_cross_tenant_access(actor, target, "read").allowed is True

    def test_same_department_is_allowed(self, guard):
        target = make_target(resource_type=ResourceType.DEPARTMENT, department_id="dept-y")
        assert guard.prevent_cross_tenant_access(make_actor(department_id="dept-y"), target, "read").allowed is True

    def test_department_resource_without_department_is_allowed(self, guard):
        target = make_target(resource_type=ResourceType.DEPARTMENT, department_id=None)
        assert guard.prevent_cross_tenant_access(make_actor(), target, "read").allowed is True

    def test_department_rule_only_applies_to_department_resources(self, guard):
        target = make_target(resource_type=ResourceType.CLASS, department_id="dept-x")
        assert guard.prevent_cross_tenant_access(make_actor(department_id="dept-y"), target, "read").allowed is True

    def test_empty_action_is_rejected(self, guard):
        with pytest.raises(InvalidArgument):
            guard.prevent_cross_tenant_access(make_actor(), make_target(), "")


class TestEscalation:

    def test_sixth_denial_generates_alert(self, guard, event_store):
        actor = make_actor()
        target = make_target(institution_id="inst-b")

        results = [guard.prevent_cross_tenant_access(actor, target, "read") for _ in range(6)]

        assert [r.alert_generated for r in results] == [False] * 5 + [True]
        assert all(r.allowed is False for r in results)
        generated = alerts(event_store)
        assert len(generated) == 1
        assert generated[0].metadata["severity"] == Severity.HIGH.value
        assert generated[0].metadata["metadata"]["attemptCount"] == 6

    def test_denials_outside_window_do_not_count(self, guard, clock):
        actor = make_actor()
        target = make_target(institution_id="inst-b")
        for _ in range(5):
            guard.prevent_cross_tenant_access(actor, target, "read")

        clock.advance(minutes=16)
        assert guard.prevent_cross_tenant_access(actor, target, "read").alert_generated is False

    def test_escalation_is_per_subject(self, guard):
        target = make_target(institution_id="inst-b")
        for i in range(5):
            guard.prevent_cross_tenant_access(make_actor(subject_id=f"user-{i}"), target, "read")
        assert guard.prevent_cross_tenant_access(make_actor(subject_id="user-9"), target, "read").alert_generated is False

    def test_department_denials_escalate_too(self, guard):
        actor = make_actor(department_id="dept-y")
        target = make_target(resource_type=ResourceType.DEPARTMENT, department_id="dept-x")
        results = [guard.prevent_cross_tenant_access(actor, target, "update") for _ in range(6)]
        assert results[-1].alert_generated is True

    def test_critical_escalation_blocks_subject(self, guard, registry, event_store):
        actor = make_actor()
        target = make_target(institution_id="inst-b")

        for _ in range(12):
            guard.prevent_cross_tenant_access(actor, target, "read")

        severities = [a.metadata["severity"] for a in alerts(event_store)]
        assert Severity.CRITICAL.value in severities
        status = registry.is_user_blocked(actor.subject_id)
        assert status.blocked is True

    def test_auto_block_happens_once(self, guard, event_store):
        actor = make_actor()
        target = make_target(institution_id="inst-b")
        for _ in range(15):
            guard.prevent_cross_tenant_access(actor, target, "read")

        blocks = event_store.query_events(EventFilter(subject_id=actor.subject_id, action="temporary_block"))
        assert len(blocks) == 1

    def test_auto_block_can_be_disabled(self, event_store, registry, settings, clock):
        guard = AccessGuard(
            event_store, registry, settings.model_copy(update={"AUTO_BLOCK_ON_CRITICAL": False}), clock
        )
        actor = make_actor()
        for _ in range(12):
            guard.prevent_cross_tenant_access(actor, make_target(institution_id="inst-b"), "read")
        assert registry.is_user_blocked(actor.subject_id).blocked is False


class TestFailurePolicy:

    def test_unreadable_history_fails_closed(self, settings, clock):
        guard = AccessGuard(UnreadableEventStore(), settings=settings, clock=clock)
        with pytest.raises(StorageUnavailable):
            guard.prevent_cross_tenant_access(make_actor(), make_target(institution_id="inst-b"), "read")

    def test_failed_grant_log_keeps_decision(self, settings, clock):
        guard = AccessGuard(FailingEventStore(), settings=settings, clock=clock)
        assert guard.prevent_cross_tenant_access(make_actor(), make_target(), "read").allowed is True

    def test_alert_write_failure_is_swallowed(self, settings, clock):
        guard = AccessGuard(FailingEventStore(), settings=settings, clock=clock)
        event = guard.log_security_alert("user-1", "inst-a", Severity.HIGH, "manual", "test")
        assert event.metadata["type"] == "manual"


class TestSecurityAlerts:

    def test_log_security_alert_payload(self, guard, event_store, clock):
        event = guard.log_security_alert(
            subject_id="user-1",
            institution_id="inst-a",
            severity=Severity.CRITICAL,
            alert_type=CRITICAL_VIOLATION_ALERT,
            description="Export massif de données",
            affected_resources=["class:1", "class:2"],
            metadata={"source": "audit"},
        )

        assert event_store.events == [event]
        assert event.event_type == EventType.SUSPICIOUS_ACTIVITY
        assert event.timestamp == clock()
        assert event.metadata["severity"] == "critical"
        assert event.metadata["affectedResources"] == ["class:1", "class:2"]
        assert event.metadata["metadata"] == {"source": "audit"}
        assert event.metadata["alertId"]

    def test_alert_lists_recent_resources(self, guard, event_store, clock):
        actor = make_actor()
        for i in range(6):
            clock.advance(seconds=10)
            guard.prevent_cross_tenant_access(actor, make_target(institution_id="inst-b", resource_id=f"c{i}"), "read")

        alert = alerts(event_store)[0]
        assert sorted(alert.metadata["affectedResources"]) == sorted(f"class:c{i}" for i in range(6))
        assert alert.timestamp - event_store.events[0].timestamp == timedelta(seconds=50)
