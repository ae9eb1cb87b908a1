"""On-call rotation, override, and escalation models."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from beacon.database import Base


class NotifyMethod(enum.StrEnum):
    IN_APP = "in_app"
    EMAIL = "email"
    WEBHOOK = "webhook"
    SMS = "sms"


class RunStatus(enum.StrEnum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    EXHAUSTED = "exhausted"


# ─── Schedules ─────────────────────────────────────────────


class OnCallSchedule(Base):
    __tablename__ = "oncall_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    timezone: Mapped[str] = mapped_column(String(100), nullable=False, default="UTC")
    rotation_interval_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
    )
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    anchor_date: Mapped[date] = mapped_column(
        Date, nullable=False, server_default=func.current_date()
    )
    last_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    members: Mapped[list["OnCallMember"]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="OnCallMember.position",
    )
    overrides: Mapped[list["OnCallOverride"]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="OnCallOverride.override_date",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        server_default=func.now(), onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_oncall_schedules_owner", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<OnCallSchedule {self.name}>"


class OnCallMember(Base):
    __tablename__ = "oncall_members"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("oncall_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    schedule: Mapped["OnCallSchedule"] = relationship(back_populates="members")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("schedule_id", "position", name="uq_oncall_members_position"),
    )

    def __repr__(self) -> str:
        return f"<OnCallMember {self.name} #{self.position}>"


class OnCallOverride(Base):
    __tablename__ = "oncall_overrides"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("oncall_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    override_date: Mapped[date] = mapped_column(Date, nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("oncall_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(255))

    schedule: Mapped["OnCallSchedule"] = relationship(back_populates="overrides")
    member: Mapped["OnCallMember"] = relationship()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "schedule_id", "override_date", name="uq_oncall_overrides_schedule_date"
        ),
        Index("idx_oncall_overrides_member", "member_id"),
    )

    def __repr__(self) -> str:
        return f"<OnCallOverride schedule={self.schedule_id} date={self.override_date}>"


# ─── Escalation ────────────────────────────────────────────


class EscalationPolicy(Base):
    __tablename__ = "escalation_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    repeat_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )

    levels: Mapped[list["EscalationLevel"]] = relationship(
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="EscalationLevel.level_order",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        server_default=func.now(), onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<EscalationPolicy {self.name}>"


class EscalationLevel(Base):
    __tablename__ = "escalation_levels"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("escalation_policies.id", ondelete="CASCADE"),
        nullable=False,
    )
    level_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notify_method: Mapped[NotifyMethod] = mapped_column(
        Enum(NotifyMethod, values_callable=lambda x: [e.value for e in x]),
        nullable=False, default=NotifyMethod.IN_APP,
    )
    timeout_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    schedule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("oncall_schedules.id", ondelete="SET NULL"),
    )
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_address: Mapped[str | None] = mapped_column(String(255))

    policy: Mapped["EscalationPolicy"] = relationship(back_populates="levels")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("policy_id", "level_order", name="uq_escalation_levels_order"),
    )

    def __repr__(self) -> str:
        return f"<EscalationLevel L{self.level_order} {self.notify_method.value}>"


class EscalationRun(Base):
    __tablename__ = "escalation_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("escalation_policies.id", ondelete="CASCADE"),
        nullable=False,
    )
    reference_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str | None] = mapped_column(String(500))
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="warning")
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False, default=RunStatus.ACTIVE,
    )
    level_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cycles_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    acknowledged_by: Mapped[str | None] = mapped_column(String(255))
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    policy: Mapped["EscalationPolicy"] = relationship()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        server_default=func.now(), onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_escalation_runs_status", "status"),
        Index("idx_escalation_runs_reference", "reference_id"),
    )

    def __repr__(self) -> str:
        return f"<EscalationRun {self.reference_id} [{self.status.value}] L{self.level_index}>"
