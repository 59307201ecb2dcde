from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from models.communication_log import DocumentType


class PortalDocument(BaseModel):
    document_type: DocumentType
    document_id: str
    document_number: Optional[str] = None
    total: float = 0.0
    client_info: Dict[str, Any] = Field(default_factory=dict)
    company_info: Dict[str, Any] = Field(default_factory=dict)
