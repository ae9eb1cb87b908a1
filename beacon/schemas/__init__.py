import uuid
from datetime import date, datetime
from enum import StrEnum
from zoneinfo import available_timezones

from pydantic import BaseModel, Field, field_validator, model_validator

# ─── Enums (mirroring SQLAlchemy but for API layer) ──────


class SeverityEnum(StrEnum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class NotifyMethodEnum(StrEnum):
    IN_APP = "in_app"
    EMAIL = "email"
    WEBHOOK = "webhook"
    SMS = "sms"


class RunStatusEnum(StrEnum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    EXHAUSTED = "exhausted"


class OverrideSortEnum(StrEnum):
    CREATED_AT = "created_at"
    OVERRIDE_DATE = "override_date"
    MEMBER_NAME = "member_name"


class SortDirectionEnum(StrEnum):
    ASC = "asc"
    DESC = "desc"


# ─── On-Call Schedules ────────────────────────────────────


class OnCallMemberSchema(BaseModel):
    """A member in an on-call rotation. List order is rotation order."""
    id: uuid.UUID | None = Field(
        default=None, description="Existing member to keep (preserves its overrides)"
    )
    user_id: uuid.UUID | None = None
    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)


class OnCallMemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    name: str
    email: str | None = None
    phone: str | None = None
    position: int

    model_config = {"from_attributes": True}


def _check_timezone(v: str | None) -> str | None:
    if v is not None and v not in available_timezones():
        raise ValueError(f"Invalid timezone: {v}")
    return v


class OnCallScheduleCreate(BaseModel):
    owner_id: uuid.UUID
    name: str = Field(..., max_length=255)
    description: str | None = None
    timezone: str = Field(default="UTC", max_length=100)
    rotation_interval_days: int = Field(default=1, ge=1, le=365)
    current_index: int = Field(default=0, ge=0)
    anchor_date: date | None = None
    members: list[OnCallMemberSchema] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return _check_timezone(v)

    @model_validator(mode="after")
    def validate_current_index(self) -> "OnCallScheduleCreate":
        if self.members and self.current_index >= len(self.members):
            raise ValueError("current_index must point at a member")
        return self


class OnCallScheduleUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    timezone: str | None = Field(default=None, max_length=100)
    rotation_interval_days: int | None = Field(default=None, ge=1, le=365)
    current_index: int | None = Field(default=None, ge=0)
    anchor_date: date | None = None
    members: list[OnCallMemberSchema] | None = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        return _check_timezone(v)


class OnCallScheduleResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    description: str | None = None
    timezone: str
    rotation_interval_days: int
    current_index: int
    anchor_date: date
    last_rotated_at: datetime | None = None
    members: list[OnCallMemberResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OnCallScheduleListResponse(BaseModel):
    schedules: list[OnCallScheduleResponse]
    total: int
    page: int
    page_size: int


class AssignmentResponse(BaseModel):
    day: date
    member: OnCallMemberResponse | None = None
    is_override: bool = False
    nominal_member: OnCallMemberResponse | None = None
    override_id: uuid.UUID | None = None
    reason: str | None = None


class OnCallCurrentResponse(AssignmentResponse):
    schedule_id: uuid.UUID
    schedule_name: str


class OnCallCalendarResponse(BaseModel):
    schedule_id: uuid.UUID
    start: date
    end: date
    days: list[AssignmentResponse]


class RotationResponse(BaseModel):
    rotated: int
    total: int


# ─── Overrides ────────────────────────────────────────────


class OnCallOverrideSet(BaseModel):
    member_id: uuid.UUID
    reason: str | None = Field(default=None, max_length=1000)
    created_by: str | None = Field(default=None, max_length=255)


class OnCallBulkOverrideCreate(OnCallOverrideSet):
    start: date
    end: date

    @model_validator(mode="after")
    def validate_range(self) -> "OnCallBulkOverrideCreate":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class OnCallOverrideResponse(BaseModel):
    id: uuid.UUID
    schedule_id: uuid.UUID
    override_date: date
    member_id: uuid.UUID
    member_name: str | None = None
    reason: str | None = None
    created_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OnCallOverrideListResponse(BaseModel):
    overrides: list[OnCallOverrideResponse]
    total: int
    page: int
    page_size: int


# ─── Escalation Policies ─────────────────────────────────


class EscalationLevelSchema(BaseModel):
    """A single escalation level. List order is escalation order."""
    notify_method: NotifyMethodEnum = NotifyMethodEnum.IN_APP
    timeout_minutes: int = Field(default=15, ge=1, le=1440)
    schedule_id: uuid.UUID | None = None
    contact_name: str | None = Field(default=None, max_length=255)
    contact_address: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_recipient(self) -> "EscalationLevelSchema":
        if not self.schedule_id and not (self.contact_name or self.contact_address):
            raise ValueError("a level needs a schedule_id or a static contact")
        return self


class EscalationLevelResponse(BaseModel):
    id: uuid.UUID
    level_order: int
    notify_method: NotifyMethodEnum
    timeout_minutes: int
    schedule_id: uuid.UUID | None = None
    contact_name: str | None = None
    contact_address: str | None = None

    model_config = {"from_attributes": True}


class EscalationPolicyCreate(BaseModel):
    owner_id: uuid.UUID
    name: str = Field(..., max_length=255)
    description: str | None = None
    repeat_count: int = Field(default=0, ge=0, le=10)
    levels: list[EscalationLevelSchema] = Field(default_factory=list)


class EscalationPolicyUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    repeat_count: int | None = Field(default=None, ge=0, le=10)
    levels: list[EscalationLevelSchema] | None = None


class EscalationPolicyResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    description: str | None = None
    repeat_count: int = 0
    levels: list[EscalationLevelResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PolicyListResponse(BaseModel):
    policies: list[EscalationPolicyResponse]
    total: int
    page: int
    page_size: int


# ─── Escalation Runs ─────────────────────────────────────


class EscalationTriggerRequest(BaseModel):
    policy_id: uuid.UUID
    severity: SeverityEnum = SeverityEnum.WARNING
    reference_id: str = Field(..., min_length=1, max_length=255)
    title: str | None = Field(default=None, max_length=500)


class EscalationAckRequest(BaseModel):
    acknowledged_by: str | None = Field(default=None, max_length=255)
    timestamp: datetime | None = None


class EscalationAckByReferenceRequest(EscalationAckRequest):
    reference_id: str = Field(..., min_length=1, max_length=255)


class EscalationRunResponse(BaseModel):
    id: uuid.UUID
    policy_id: uuid.UUID
    reference_id: str
    title: str | None = None
    severity: str
    status: RunStatusEnum
    level_index: int
    cycles_remaining: int
    level_started_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class EscalationRunListResponse(BaseModel):
    runs: list[EscalationRunResponse]
    total: int
    page: int
    page_size: int


class EscalationAckByReferenceResponse(BaseModel):
    reference_id: str
    acknowledged: int
    runs: list[EscalationRunResponse]


class TickResponse(BaseModel):
    evaluated: int
    advanced: int
    wrapped: int
    exhausted: int
    skipped: int


# ─── Notification Targets ─────────────────────────────────


class NotificationTargetCreate(BaseModel):
    owner_id: uuid.UUID
    name: str = Field(..., max_length=255)
    url: str = Field(..., min_length=1, max_length=2000)
    enabled: bool = True
    events: list[str] = Field(default_factory=lambda: ["alert", "prediction", "incident"])
    secret: str | None = Field(default=None, max_length=255)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v


class NotificationTargetUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    url: str | None = Field(default=None, min_length=1, max_length=2000)
    enabled: bool | None = None
    events: list[str] | None = None
    secret: str | None = Field(default=None, max_length=255)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v


class NotificationTargetResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    url: str
    enabled: bool
    events: list[str]
    has_secret: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def hide_secret(cls, data):
        # Never echo the signing secret back; only say whether one is set.
        if isinstance(data, dict):
            if "secret" in data:
                return {**data, "has_secret": bool(data["secret"])}
            return data
        return {
            "id": data.id,
            "owner_id": data.owner_id,
            "name": data.name,
            "url": data.url,
            "enabled": data.enabled,
            "events": data.events or [],
            "has_secret": bool(data.secret),
            "created_at": data.created_at,
            "updated_at": data.updated_at,
        }


class NotificationTargetListResponse(BaseModel):
    targets: list[NotificationTargetResponse]
    total: int
    page: int
    page_size: int


class DispatchRequest(BaseModel):
    owner_id: uuid.UUID
    event_type: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=500)
    message: str = ""
    severity: SeverityEnum = SeverityEnum.INFO
    metadata: dict = Field(default_factory=dict)


class TargetResultResponse(BaseModel):
    target_id: uuid.UUID
    name: str
    formatter: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    attempts: int = 0
    last_attempt: int | None = None
    delivery_id: uuid.UUID | None = None

    model_config = {"from_attributes": True}


class DispatchResponse(BaseModel):
    delivered: int
    total: int
    results: list[TargetResultResponse]


class DeliveryAttemptResponse(BaseModel):
    id: uuid.UUID
    target_id: uuid.UUID
    owner_id: uuid.UUID
    event_type: str
    payload: dict
    attempt: int
    status_code: int | None = None
    success: bool
    error_message: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeliveryAttemptListResponse(BaseModel):
    deliveries: list[DeliveryAttemptResponse]
    total: int
    page: int
    page_size: int


class InAppNotificationResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    type: str
    title: str
    message: str | None = None
    severity: str
    read: bool
    metadata: dict = Field(default_factory=dict, validation_alias="notification_metadata")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class InAppNotificationListResponse(BaseModel):
    notifications: list[InAppNotificationResponse]
    total: int
    unread: int
    page: int
    page_size: int
