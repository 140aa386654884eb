import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, TIMESTAMP, Integer, Text, JSON, Uuid, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # Naive UTC, matching the TIMESTAMP WITHOUT TIME ZONE columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationStatus(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    DROPPED = "DROPPED"


class NotificationPriority(str, enum.Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_notifications_tenant_idempotency_key"),
        Index("ix_notifications_status_next_attempt_at", "status", "next_attempt_at"),
        Index("ix_notifications_tenant_status_created_at", "tenant_id", "status", "created_at"),
        Index("ix_notifications_status_locked_at", "status", "locked_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(100), nullable=False)
    idempotency_key = Column(String(200), nullable=False)
    request_hash = Column(String(64), nullable=False)

    event_type = Column(String(100), nullable=False)
    priority = Column(String(2), nullable=False)
    template_id = Column(String(200), nullable=False)
    to_email = Column(String(254), nullable=False)
    to_name = Column(String(200), nullable=True)
    variables = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    status = Column(String(20), nullable=False, default=NotificationStatus.ACCEPTED.value)
    attempts = Column(Integer, nullable=False, default=0)
    locked_at = Column(TIMESTAMP, nullable=True)
    next_attempt_at = Column(TIMESTAMP, nullable=True)
    expires_at = Column(TIMESTAMP, nullable=True)

    last_error = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    provider = Column(String(50), nullable=True)

    sent_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return (
            f"<Notification(id='{self.id}', tenant_id='{self.tenant_id}', priority='{self.priority}', "
            f"status='{self.status}', attempts={self.attempts})>"
        )
