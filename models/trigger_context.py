from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError
from typing import Annotated, Optional, Dict, Any, Union, Literal
from datetime import datetime, timezone

from models.workflow import TriggerType
from utils.errors import InvalidContextError


class Snapshot(BaseModel):
    # Snapshots are copied by value into the execution log; extra columns ride along.
    model_config = ConfigDict(extra="allow")


class ClientSnapshot(Snapshot):
    id: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @property
    def display_first_name(self) -> str:
        if self.first_name:
            return self.first_name
        return (self.name or "").split(" ")[0]

    @property
    def display_last_name(self) -> str:
        if self.last_name:
            return self.last_name
        return " ".join((self.name or "").split(" ")[1:])


class CompanySnapshot(Snapshot):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None


class JobSnapshot(Snapshot):
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    schedule_start: Optional[datetime] = None
    technician_name: Optional[str] = None
    client_id: Optional[str] = None


class EstimateSnapshot(Snapshot):
    id: str
    estimate_number: Optional[str] = None
    total: float = 0.0
    status: Optional[str] = None
    portal_access_token: Optional[str] = None
    job_id: Optional[str] = None
    client_id: Optional[str] = None


class InvoiceSnapshot(Snapshot):
    id: str
    invoice_number: Optional[str] = None
    total: float = 0.0
    amount_paid: float = 0.0
    due_date: Optional[str] = None
    status: Optional[str] = None
    portal_access_token: Optional[str] = None
    job_id: Optional[str] = None
    client_id: Optional[str] = None


class BaseTriggerContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organization_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    client: Optional[ClientSnapshot] = None
    company: Optional[CompanySnapshot] = None


class JobCreatedContext(BaseTriggerContext):
    event_type: Literal["job_created"] = "job_created"
    job: JobSnapshot


class JobStatusChangedContext(BaseTriggerContext):
    event_type: Literal["job_status_changed"] = "job_status_changed"
    job: JobSnapshot
    previous_status: Optional[str] = None
    new_status: str


class EstimateSentContext(BaseTriggerContext):
    event_type: Literal["estimate_sent"] = "estimate_sent"
    estimate: EstimateSnapshot
    job: Optional[JobSnapshot] = None


class InvoiceSentContext(BaseTriggerContext):
    event_type: Literal["invoice_sent"] = "invoice_sent"
    invoice: InvoiceSnapshot
    job: Optional[JobSnapshot] = None


class InvoiceOverdueContext(BaseTriggerContext):
    event_type: Literal["invoice_overdue"] = "invoice_overdue"
    invoice: InvoiceSnapshot
    days_overdue: int = 0


class PaymentReceivedContext(BaseTriggerContext):
    event_type: Literal["payment_received"] = "payment_received"
    invoice: InvoiceSnapshot
    amount: float
    method: Optional[str] = None


class MissedCallContext(BaseTriggerContext):
    event_type: Literal["missed_call"] = "missed_call"
    caller_phone: str
    called_number: Optional[str] = None


TriggerContext = Annotated[
    Union[
        JobCreatedContext,
        JobStatusChangedContext,
        EstimateSentContext,
        InvoiceSentContext,
        InvoiceOverdueContext,
        PaymentReceivedContext,
        MissedCallContext,
    ],
    Field(discriminator="event_type"),
]

_context_adapter: TypeAdapter = TypeAdapter(TriggerContext)


def parse_trigger_context(event_type: Union[TriggerType, str], data: Union[Dict[str, Any], BaseTriggerContext]):
    """
    Validates a context snapshot for `event_type` and returns the typed model.

    Raises InvalidContextError when the payload does not fit the event's shape,
    names a different event, or holds values that cannot be stored as JSON.
    """
    try:
        event_type = TriggerType(event_type).value
    except ValueError as e:
        raise InvalidContextError(f"Unknown event type: {event_type}") from e
    if isinstance(data, BaseTriggerContext):
        data = data.model_dump()
    payload = dict(data or {})
    declared = payload.setdefault("event_type", event_type)
    if declared != event_type:
        raise InvalidContextError(f"Context is for '{declared}', not '{event_type}'")

    try:
        context = _context_adapter.validate_python(payload)
        # Snapshots are persisted; anything that is not plain data is rejected here.
        context.model_dump(mode="json")
    except (ValidationError, PydanticSerializationError) as e:
        raise InvalidContextError(f"Invalid {event_type} context: {e}") from e
    return context


def load_trigger_context(data: Dict[str, Any]):
    """Rebuilds a stored context; `event_type` must be present in `data`."""
    if not data or "event_type" not in data:
        raise InvalidContextError("Stored context has no event_type")
    return parse_trigger_context(data["event_type"], data)
