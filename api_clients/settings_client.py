from typing import Optional
from api_clients.base_client import TableStore
from models.sender_identity import OrganizationCommunicationSettings
import logging

logger = logging.getLogger("automation_service")

SETTINGS_TABLE = "organization_communication_settings"


class OrganizationSettingsClient:

    def __init__(self, store: TableStore):
        self.store = store

    def get(self, organization_id: Optional[str]) -> Optional[OrganizationCommunicationSettings]:
        if not organization_id:
            return None
        rows = self.store.select(SETTINGS_TABLE, [("organization_id", "eq", organization_id)], limit=1)
        if not rows:
            logger.debug(f"No communication settings for organization {organization_id}")
            return None
        return OrganizationCommunicationSettings.model_validate(rows[0])
