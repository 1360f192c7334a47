# tenant_guard/models/enrollment_attempt.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Index

from tenant_guard.db.base import Base


class EnrollmentAttemptRow(Base):
    """Trace forensique des tentatives d'inscription (indépendante des compteurs)"""
    __tablename__ = "enrollment_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    class_id = Column(String(64), nullable=True)
    ip_address = Column(String(45), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)
    attempt_type = Column(String(50), nullable=False, default="enrollment")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    __table_args__ = (
        Index("ix_enrollment_attempts_user_created", "user_id", "created_at"),
    )
