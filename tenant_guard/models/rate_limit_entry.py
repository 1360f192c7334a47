# tenant_guard/models/rate_limit_entry.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer

from tenant_guard.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class RateLimitEntryRow(Base):
    """Fenêtre de limitation, une ligne par clé "sujet:action" ou "ip:<ip>:action" """
    __tablename__ = "rate_limit_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    key = Column(String(255), unique=True, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime(timezone=True), nullable=True)
    blocked_until = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<RateLimitEntryRow {self.key} attempts={self.attempts}>"
