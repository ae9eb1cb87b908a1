import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from beacon.database import Base

# ─── Enums ───────────────────────────────────────────────


class Severity(enum.StrEnum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class EventType(enum.StrEnum):
    ALERT = "alert"
    PREDICTION = "prediction"
    INCIDENT = "incident"
    ESCALATION = "escalation"
    ONCALL = "oncall"
    TEST = "test"


DEFAULT_TARGET_EVENTS = [EventType.ALERT.value, EventType.PREDICTION.value, EventType.INCIDENT.value]


# ─── Notification Target ─────────────────────────────────


class NotificationTarget(Base):
    __tablename__ = "notification_targets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    events: Mapped[list] = mapped_column(JSONB, default=lambda: list(DEFAULT_TARGET_EVENTS))
    secret: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    deliveries: Mapped[list["DeliveryAttempt"]] = relationship(back_populates="target")

    __table_args__ = (
        Index("idx_notification_targets_owner", "owner_id", "enabled"),
        Index("idx_notification_targets_events", "events", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<NotificationTarget {self.name} ({self.url})>"


# ─── Delivery Ledger ─────────────────────────────────────


class DeliveryAttempt(Base):
    """One delivery attempt. Rows are append-only and never updated."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    target_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("notification_targets.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status_code: Mapped[int | None] = mapped_column(Integer)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    target: Mapped["NotificationTarget"] = relationship(back_populates="deliveries")

    __table_args__ = (
        Index("idx_delivery_attempts_owner_created", "owner_id", "created_at"),
        Index("idx_delivery_attempts_target", "target_id"),
    )

    def __repr__(self) -> str:
        state = "ok" if self.success else "failed"
        return f"<DeliveryAttempt {self.event_type} #{self.attempt} [{state}]>"


# ─── In-App Notification ─────────────────────────────────


class InAppNotification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default=EventType.ALERT.value)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=Severity.INFO.value)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_metadata: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_notifications_owner_read", "owner_id", "read"),
    )

    def __repr__(self) -> str:
        return f"<InAppNotification {self.type}: {self.title}>"


# ─── On-Call Models (re-exported) ─────────────────────────
# Imported after all base models are defined to avoid circular deps

from beacon.models.oncall import EscalationLevel as EscalationLevel  # noqa: E402
from beacon.models.oncall import EscalationPolicy as EscalationPolicy  # noqa: E402
from beacon.models.oncall import EscalationRun as EscalationRun  # noqa: E402
from beacon.models.oncall import NotifyMethod as NotifyMethod  # noqa: E402
from beacon.models.oncall import OnCallMember as OnCallMember  # noqa: E402
from beacon.models.oncall import OnCallOverride as OnCallOverride  # noqa: E402
from beacon.models.oncall import OnCallSchedule as OnCallSchedule  # noqa: E402
from beacon.models.oncall import RunStatus as RunStatus  # noqa: E402
