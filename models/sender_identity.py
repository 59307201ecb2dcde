from pydantic import BaseModel
from typing import Optional


class EmailIdentity(BaseModel):
    from_email: str
    from_name: Optional[str] = None
    domain: Optional[str] = None

    @property
    def from_field(self) -> str:
        if self.from_name:
            return f"{self.from_name} <{self.from_email}>"
        return self.from_email


class OrganizationCommunicationSettings(BaseModel):
    organization_id: str
    default_from_email: Optional[str] = None
    default_from_name: Optional[str] = None
    mailgun_domain: Optional[str] = None
    sms_from_number: Optional[str] = None
    timezone: Optional[str] = None
