# tenant_guard/stores/sql.py
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from tenant_guard.core.timeutils import ensure_utc, utcnow
from tenant_guard.db.session import SessionLocal, session_scope
from tenant_guard.models import EnrollmentAttemptRow, RateLimitEntryRow, TenantSecurityEvent
from tenant_guard.schemas.security import (
    AccessEvent,
    EnrollmentAttempt,
    EventFilter,
    RateLimitEntry,
)
from tenant_guard.stores.base import AttemptLog, CounterStore, EventStore

logger = logging.getLogger(__name__)


class SqlEventStore(EventStore):
    """Journal d'événements sur la table tenant_security_events"""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def append_event(self, event: AccessEvent) -> None:
        with session_scope(self.session_factory, store="event_store") as db:
            db.add(TenantSecurityEvent(
                id=event.id,
                user_id=event.subject_id,
                institution_id=event.institution_id,
                department_id=event.department_id,
                role=event.role,
                event_type=event.event_type.value,
                resource=event.resource,
                action=event.action,
                target_institution_id=event.target_institution_id,
                target_department_id=event.target_department_id,
                event_metadata=dict(event.metadata),
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                timestamp=ensure_utc(event.timestamp),
            ))

    def query_events(self, event_filter: EventFilter) -> List[AccessEvent]:
        query = select(TenantSecurityEvent)

        if event_filter.subject_id is not None:
            query = query.where(TenantSecurityEvent.user_id == event_filter.subject_id)
        if event_filter.institution_id is not None:
            query = query.where(TenantSecurityEvent.institution_id == event_filter.institution_id)
        if event_filter.event_type is not None:
            query = query.where(TenantSecurityEvent.event_type == event_filter.event_type.value)
        if event_filter.action is not None:
            query = query.where(TenantSecurityEvent.action == event_filter.action)
        if event_filter.since is not None:
            query = query.where(TenantSecurityEvent.timestamp >= ensure_utc(event_filter.since))
        if event_filter.until is not None:
            query = query.where(TenantSecurityEvent.timestamp <= ensure_utc(event_filter.until))

        query = query.order_by(TenantSecurityEvent.timestamp.desc(), TenantSecurityEvent.seq.desc())
        if event_filter.limit is not None:
            query = query.limit(event_filter.limit)

        with session_scope(self.session_factory, store="event_store") as db:
            rows = db.execute(query).scalars().all()
            return [self._to_event(row) for row in rows]

    @staticmethod
    def _to_event(row: TenantSecurityEvent) -> AccessEvent:
        return AccessEvent(
            id=row.id,
            subject_id=row.user_id,
            institution_id=row.institution_id,
            department_id=row.department_id,
            role=row.role,
            event_type=row.event_type,
            resource=row.resource,
            action=row.action,
            target_institution_id=row.target_institution_id,
            target_department_id=row.target_department_id,
            metadata=row.event_metadata or {},
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            timestamp=ensure_utc(row.timestamp),
        )


def _dialect_insert(dialect_name: str):
    """insert() avec ON CONFLICT pour PostgreSQL et SQLite"""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class SqlCounterStore(CounterStore):
    """Compteurs sur la table rate_limit_entries (upsert atomique par clé)"""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def get_entry(self, key: str) -> Optional[RateLimitEntry]:
        with session_scope(self.session_factory, store="counter_store") as db:
            row = db.execute(
                select(RateLimitEntryRow).where(RateLimitEntryRow.key == key)
            ).scalar_one_or_none()
            if row is None:
                return None
            return RateLimitEntry(
                key=row.key,
                attempts=row.attempts or 0,
                window_start=ensure_utc(row.window_start),
                blocked_until=ensure_utc(row.blocked_until),
                updated_at=ensure_utc(row.updated_at),
            )

    def upsert_entry(self, entry: RateLimitEntry) -> None:
        updated_at = ensure_utc(entry.updated_at) or utcnow()
        values = {
            "key": entry.key,
            "attempts": entry.attempts,
            "window_start": ensure_utc(entry.window_start),
            "blocked_until": ensure_utc(entry.blocked_until),
            "updated_at": updated_at,
        }

        with session_scope(self.session_factory, store="counter_store") as db:
            insert = _dialect_insert(db.get_bind().dialect.name)
            if insert is None:
                # Dialecte sans ON CONFLICT : lecture puis écriture dans la même transaction
                row = db.execute(
                    select(RateLimitEntryRow).where(RateLimitEntryRow.key == entry.key)
                ).scalar_one_or_none()
                if row is None:
                    db.add(RateLimitEntryRow(id=str(uuid.uuid4()), created_at=updated_at, **values))
                else:
                    for field, value in values.items():
                        setattr(row, field, value)
                return

            stmt = insert(RateLimitEntryRow).values(
                id=str(uuid.uuid4()), created_at=updated_at, **values
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[RateLimitEntryRow.key],
                set_={
                    "attempts": stmt.excluded.attempts,
                    "window_start": stmt.excluded.window_start,
                    "blocked_until": stmt.excluded.blocked_until,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            db.execute(stmt)

    def delete_entry(self, key: str) -> None:
        with session_scope(self.session_factory, store="counter_store") as db:
            db.execute(delete(RateLimitEntryRow).where(RateLimitEntryRow.key == key))

    def delete_entries_older_than(self, timestamp: datetime) -> int:
        with session_scope(self.session_factory, store="counter_store") as db:
            result = db.execute(
                delete(RateLimitEntryRow).where(RateLimitEntryRow.updated_at < ensure_utc(timestamp))
            )
            return result.rowcount or 0


class SqlAttemptLog(AttemptLog):
    """Tentatives d'inscription sur la table enrollment_attempts"""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def append_attempt(self, attempt: EnrollmentAttempt) -> None:
        with session_scope(self.session_factory, store="attempt_log") as db:
            db.add(EnrollmentAttemptRow(
                id=attempt.id,
                user_id=attempt.subject_id,
                class_id=attempt.resource_id,
                ip_address=attempt.ip_address,
                user_agent=attempt.user_agent,
                attempt_type=attempt.attempt_type,
                created_at=ensure_utc(attempt.created_at),
            ))
