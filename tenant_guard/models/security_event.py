# tenant_guard/models/security_event.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Integer, String, DateTime, Text, Index, JSON

from tenant_guard.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class TenantSecurityEvent(Base):
    """
    Journal append-only des décisions d'accès, blocages et alertes.
    Aucune ligne n'est modifiée ni supprimée par le moteur.
    """
    __tablename__ = "tenant_security_events"

    # =======================
    # Colonnes principales
    # =======================
    # Ordre d'insertion : départage les événements de même horodatage
    seq = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    institution_id = Column(String(64), nullable=True, index=True)
    department_id = Column(String(64), nullable=True)
    role = Column(String(50), nullable=True)

    # =======================
    # Informations sur l'événement
    # =======================
    event_type = Column(
        String(50),
        nullable=False,
        index=True,
        comment="access_granted, access_denied, suspicious_activity"
    )
    resource = Column(String(100), nullable=False)
    action = Column(String(50), nullable=False, index=True)

    target_institution_id = Column(String(64), nullable=True)
    target_department_id = Column(String(64), nullable=True)

    # "metadata" est réservé par SQLAlchemy sur les classes déclaratives
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # =======================
    # Contexte de sécurité
    # =======================
    ip_address = Column(String(45), nullable=True, comment="IPv4 ou IPv6")
    user_agent = Column(Text, nullable=True)

    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    # =======================
    # Indexes pour optimisation
    # =======================
    __table_args__ = (
        Index("ix_security_events_composite", "institution_id", "event_type", "timestamp"),
        Index("ix_security_events_user_action", "user_id", "action", "timestamp"),
    )

    def __repr__(self):
        return f"<TenantSecurityEvent {self.event_type} {self.user_id} {self.action}>"
