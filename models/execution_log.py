from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Set
from enum import Enum
from datetime import datetime, timezone


class LogStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES: Set[LogStatus] = {
    LogStatus.COMPLETED,
    LogStatus.FAILED,
    LogStatus.CANCELLED,
    LogStatus.EXPIRED,
}

# Every legal move. Terminal states have no way out.
ALLOWED_TRANSITIONS: Dict[LogStatus, Set[LogStatus]] = {
    LogStatus.PENDING: {LogStatus.RUNNING, LogStatus.CANCELLED, LogStatus.EXPIRED},
    LogStatus.RUNNING: {LogStatus.COMPLETED, LogStatus.FAILED, LogStatus.EXPIRED},
    LogStatus.COMPLETED: set(),
    LogStatus.FAILED: set(),
    LogStatus.CANCELLED: set(),
    LogStatus.EXPIRED: set(),
}


def can_transition(current: LogStatus, target: LogStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[LogStatus(current)]


def sources_for(target: LogStatus) -> List[str]:
    """Statuses a log may be in for an update to `target` to be legal."""
    return sorted(s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionResult(BaseModel):
    action: str
    status: ActionStatus
    detail: Optional[Any] = None


class ExecutionResult(BaseModel):
    success: bool
    results: List[ActionResult] = Field(default_factory=list)
    error: Optional[str] = None


class AutomationExecutionLog(BaseModel):
    id: Optional[str] = None
    workflow_id: str
    organization_id: Optional[str] = None
    trigger_type: Optional[str] = None
    trigger_context: Dict[str, Any]
    status: LogStatus = LogStatus.PENDING
    error_message: Optional[str] = None
    actions_executed: List[ActionResult] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    requeued_from: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
