from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from enum import Enum
from datetime import datetime, timezone


class TriggerType(str, Enum):
    JOB_CREATED = "job_created"
    JOB_STATUS_CHANGED = "job_status_changed"
    ESTIMATE_SENT = "estimate_sent"
    INVOICE_SENT = "invoice_sent"
    INVOICE_OVERDUE = "invoice_overdue"
    PAYMENT_RECEIVED = "payment_received"
    MISSED_CALL = "missed_call"


class ActionType(str, Enum):
    SEND_SMS = "send_sms"
    SEND_EMAIL = "send_email"
    WAIT = "wait"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class TriggerCondition(BaseModel):
    field: str
    # Kept as a plain string so an unknown operator loads and simply never matches.
    operator: str = ConditionOperator.EQUALS.value
    value: Any = None


class DelayType(str, Enum):
    IMMEDIATE = "immediate"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ActionDelay(BaseModel):
    type: DelayType = DelayType.IMMEDIATE
    value: int = 0


class ActionConfig(BaseModel):
    message: str = ""
    subject: Optional[str] = None
    body_html: Optional[str] = None
    delay: ActionDelay = Field(default_factory=ActionDelay)


class MultiChannelConfig(BaseModel):
    primary_channel: Optional[Channel] = None
    fallback_enabled: bool = False
    fallback_channel: Optional[Channel] = None


WEEKDAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class DeliveryWindow(BaseModel):
    enabled: bool = False
    allowed_days: List[str] = Field(default_factory=lambda: ["mon", "tue", "wed", "thu", "fri"])
    start_time: str = "08:00"
    end_time: str = "20:00"
    timezone: Optional[str] = None

    @field_validator("allowed_days")
    @classmethod
    def _check_days(cls, days: List[str]) -> List[str]:
        normalized = [d.strip().lower()[:3] for d in days]
        unknown = [d for d in normalized if d not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {unknown}")
        return normalized

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        hours, _, minutes = value.partition(":")
        if not (hours.isdigit() and minutes.isdigit() and 0 <= int(hours) < 24 and 0 <= int(minutes) < 60):
            raise ValueError(f"Expected HH:MM, got '{value}'")
        return f"{int(hours):02d}:{int(minutes):02d}"


class AutomationWorkflow(BaseModel):
    id: str
    organization_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger_conditions: List[TriggerCondition] = Field(default_factory=list)
    action_type: ActionType
    action_config: ActionConfig = Field(default_factory=ActionConfig)
    multi_channel_config: MultiChannelConfig = Field(default_factory=MultiChannelConfig)
    delivery_window: Optional[DeliveryWindow] = None
    status: WorkflowStatus = WorkflowStatus.DRAFT

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("trigger_conditions", mode="before")
    @classmethod
    def _accept_rule_wrapper(cls, value):
        # Older rows store {"operator": "AND", "rules": [...]}.
        if value is None:
            return []
        if isinstance(value, dict):
            return value.get("rules") or []
        return value

    @property
    def is_enabled(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE

    @property
    def primary_channel(self) -> Optional[Channel]:
        if self.multi_channel_config.primary_channel:
            return self.multi_channel_config.primary_channel
        if self.action_type == ActionType.SEND_SMS:
            return Channel.SMS
        if self.action_type == ActionType.SEND_EMAIL:
            return Channel.EMAIL
        return None
