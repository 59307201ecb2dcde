from typing import Any, Dict, List, Optional
from api_clients.base_client import TableStore
from models.communication_log import CommunicationLogEntry, CommunicationStatus
from utils.time_utils import to_iso, utcnow
import logging

logger = logging.getLogger("automation_service")

COMMUNICATION_TABLE = "communication_logs"


class CommunicationLogClient:
    """Append-only log of outbound sends; only provider callbacks patch `status`."""

    def __init__(self, store: TableStore):
        self.store = store

    def record(self, entry: CommunicationLogEntry) -> CommunicationLogEntry:
        row = entry.model_dump(mode="json", exclude_none=True)
        row["created_at"] = to_iso(entry.created_at)
        stored = self.store.insert(COMMUNICATION_TABLE, row)
        saved = CommunicationLogEntry.model_validate(stored)
        logger.info(f"Communication {saved.id} logged: {saved.type.value} to {saved.recipient} [{saved.status.value}]")
        return saved

    def list_for(self, filters: Dict[str, Any]) -> List[CommunicationLogEntry]:
        rows = self.store.select(COMMUNICATION_TABLE, [(k, "eq", v) for k, v in filters.items()],
                                 order_by="created_at")
        return [CommunicationLogEntry.model_validate(r) for r in rows]

    def update_status_by_provider_id(self, provider_message_id: str, status: CommunicationStatus,
                                     error_message: Optional[str] = None) -> int:
        if not provider_message_id:
            return 0
        values: Dict[str, Any] = {
            "status": CommunicationStatus(status).value,
            "updated_at": to_iso(utcnow()),
        }
        if error_message:
            values["error_message"] = error_message
        rows = self.store.update(COMMUNICATION_TABLE, values, [("provider_message_id", "eq", provider_message_id)])
        if not rows:
            logger.warning(f"Status callback for unknown provider message {provider_message_id}")
        return len(rows)
