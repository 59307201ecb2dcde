import secrets
from typing import Any, Dict, Optional
from api_clients.base_client import TableStore
from models.communication_log import DocumentType
from models.portal import PortalDocument
from utils.errors import PersistenceError
import logging

logger = logging.getLogger("automation_service")

DOCUMENT_TABLES = {
    DocumentType.ESTIMATE: ("estimates", "estimate_number"),
    DocumentType.INVOICE: ("invoices", "invoice_number"),
}
CLIENTS_TABLE = "clients"
JOBS_TABLE = "jobs"
COMPANY_TABLE = "company_settings"

_CLIENT_FIELDS = ("id", "name", "email", "phone", "address")
_COMPANY_FIELDS = ("company_name", "company_email", "company_phone", "company_address", "timezone")


class PortalTokenClient:
    """
    Maps client-facing portal tokens to estimates and invoices.

    A token lives on exactly one document. "Unknown" and "revoked" tokens are
    the same outcome here: resolve() returns None.
    """

    def __init__(self, store: TableStore, public_site_url: str = ""):
        self.store = store
        self.public_site_url = public_site_url.rstrip("/")

    def resolve(self, token: Optional[str]) -> Optional[PortalDocument]:
        token = (token or "").strip()
        if not token:
            return None

        for document_type, (table, number_field) in DOCUMENT_TABLES.items():
            rows = self.store.select(table, [("portal_access_token", "eq", token)], limit=1)
            if rows:
                return self._build(document_type, rows[0], number_field)

        logger.info("Portal token did not match any estimate or invoice")
        return None

    def _build(self, document_type: DocumentType, document: Dict[str, Any], number_field: str) -> PortalDocument:
        client = self._load_client(document)
        company = self._load_company(document)
        return PortalDocument(
            document_type=document_type,
            document_id=document["id"],
            document_number=document.get(number_field) or str(document["id"])[:8],
            total=float(document.get("total") or document.get("total_amount") or 0),
            client_info={k: client.get(k) for k in _CLIENT_FIELDS if k in client},
            company_info={k: company.get(k) for k in _COMPANY_FIELDS if k in company},
        )

    def _load_client(self, document: Dict[str, Any]) -> Dict[str, Any]:
        client_id = document.get("client_id")
        if not client_id and document.get("job_id"):
            jobs = self.store.select(JOBS_TABLE, [("id", "eq", document["job_id"])], limit=1)
            client_id = jobs[0].get("client_id") if jobs else None
        if not client_id:
            return {}
        rows = self.store.select(CLIENTS_TABLE, [("id", "eq", client_id)], limit=1)
        return rows[0] if rows else {}

    def _load_company(self, document: Dict[str, Any]) -> Dict[str, Any]:
        for column in ("organization_id", "user_id"):
            if document.get(column):
                rows = self.store.select(COMPANY_TABLE, [(column, "eq", document[column])], limit=1)
                if rows:
                    return rows[0]
        return {}

    def ensure_token(self, document_type: DocumentType, document_id: str) -> str:
        """Returns the document's portal token, issuing one if it has none."""
        table, _ = DOCUMENT_TABLES[DocumentType(document_type)]
        rows = self.store.select(table, [("id", "eq", document_id)], limit=1)
        if not rows:
            raise PersistenceError(f"{DocumentType(document_type).value.capitalize()} not found", status_code=404)
        if rows[0].get("portal_access_token"):
            return rows[0]["portal_access_token"]

        token = secrets.token_hex(32)
        updated = self.store.update(
            table,
            {"portal_access_token": token},
            [("id", "eq", document_id), ("portal_access_token", "is", None)],
        )
        if updated:
            return token
        # Someone else issued a token between our read and write.
        rows = self.store.select(table, [("id", "eq", document_id)], limit=1)
        return rows[0]["portal_access_token"]

    def portal_url(self, token: str) -> str:
        return f"{self.public_site_url}/portal/{token}"
