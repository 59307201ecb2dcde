from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone


class CommunicationType(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class Direction(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class CommunicationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class DocumentType(str, Enum):
    ESTIMATE = "estimate"
    INVOICE = "invoice"


class CommunicationLogEntry(BaseModel):
    id: Optional[str] = None
    organization_id: Optional[str] = None
    type: CommunicationType
    direction: Direction = Direction.OUTBOUND
    recipient: str
    subject: Optional[str] = None
    content: str = ""
    status: CommunicationStatus = CommunicationStatus.PENDING
    document_type: Optional[DocumentType] = None
    document_id: Optional[str] = None
    execution_log_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None


class SendResult(BaseModel):
    success: bool
    provider_id: Optional[str] = None
    communication_id: Optional[str] = None
