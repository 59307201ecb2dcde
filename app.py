from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from api_clients.change_feed import ChangeEvent, ChangeType
from models.communication_log import CommunicationStatus, DocumentType, SendResult
from models.execution_log import AutomationExecutionLog, LogStatus
from models.portal import PortalDocument
from models.sender_identity import EmailIdentity
from scheduler.processor import TickSummary
from service_factory import Services, build_services
from utils.errors import (
    DeliveryError,
    InvalidContextError,
    InvalidRecipientError,
    InvalidTransitionError,
    PersistenceError,
)

# Configure logging to file and console
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
    handlers=[
        logging.FileHandler('automation.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger("automation_service")


class EventRequest(BaseModel):
    event_type: str
    context: Dict[str, Any]


class SendEmailRequest(BaseModel):
    to: str
    subject: str
    body_html: str
    body_text: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    organization_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    document_type: Optional[DocumentType] = None
    document_id: Optional[str] = None


class SendSmsRequest(BaseModel):
    to: str
    message: str
    from_number: Optional[str] = None
    organization_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    document_type: Optional[DocumentType] = None
    document_id: Optional[str] = None


class DatabaseChange(BaseModel):
    """Database webhook body: {"type": "INSERT", "table": ..., "record": {...}, "old_record": {...}}."""
    type: str
    table: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


class StopAndClearRequest(BaseModel):
    older_than_hours: Optional[float] = None


# Provider event names mapped onto communication statuses. Anything else is ignored.
TELNYX_STATUSES = {
    "sent": CommunicationStatus.SENT,
    "delivered": CommunicationStatus.DELIVERED,
    "delivery_failed": CommunicationStatus.FAILED,
    "sending_failed": CommunicationStatus.FAILED,
    "delivery_unconfirmed": CommunicationStatus.SENT,
}
MAILGUN_STATUSES = {
    "accepted": CommunicationStatus.SENT,
    "delivered": CommunicationStatus.DELIVERED,
    "failed": CommunicationStatus.FAILED,
    "rejected": CommunicationStatus.FAILED,
}


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 80)
        logger.info("AUTOMATION SERVICE STARTING")
        logger.info("=" * 80)
        if services.settings.run_processor:
            await services.processor.start()
        yield
        await services.processor.stop()

    app = FastAPI(title="Automation Notification Service", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence error on {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/health")
    def health(svc: Services = Depends(get_services)):
        return {
            "status": "ok",
            "processor_running": svc.processor.running,
            "executor_mode": svc.settings.executor_mode,
            "dry_run": svc.settings.dry_run,
        }

    @app.post("/api/v1/events")
    def emit_event(payload: EventRequest, svc: Services = Depends(get_services)):
        try:
            logs = svc.emitter.on_event(payload.event_type, payload.context)
        except InvalidContextError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"scheduled": [log.id for log in logs]}

    @app.post("/api/v1/send/email", response_model=SendResult)
    async def send_email(payload: SendEmailRequest, svc: Services = Depends(get_services)):
        identity = None
        if payload.from_email:
            identity = EmailIdentity(from_email=payload.from_email, from_name=payload.from_name)
        try:
            return await svc.delivery.send_email(
                to=payload.to,
                subject=payload.subject,
                body_html=payload.body_html,
                body_text=payload.body_text,
                identity=identity,
                organization_id=payload.organization_id,
                variables=payload.variables,
                document_type=payload.document_type,
                document_id=payload.document_id,
                reply_to=payload.reply_to,
            )
        except InvalidRecipientError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except DeliveryError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.post("/api/v1/send/sms", response_model=SendResult)
    async def send_sms(payload: SendSmsRequest, svc: Services = Depends(get_services)):
        try:
            return await svc.delivery.send_sms(
                to=payload.to,
                message=payload.message,
                from_number=payload.from_number,
                organization_id=payload.organization_id,
                variables=payload.variables,
                document_type=payload.document_type,
                document_id=payload.document_id,
            )
        except InvalidRecipientError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except DeliveryError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.post("/api/v1/hooks/db-change")
    def database_change(payload: DatabaseChange, svc: Services = Depends(get_services)):
        try:
            event_type = ChangeType(payload.type.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown change type: {payload.type}")
        row = payload.record if event_type != ChangeType.DELETE else payload.old_record
        delivered = svc.feed.publish(ChangeEvent(event_type=event_type, table=payload.table, row=row or {}))
        return {"delivered": delivered}

    @app.post("/api/v1/hooks/telnyx")
    def telnyx_status(payload: Dict[str, Any], svc: Services = Depends(get_services)):
        data = payload.get("data") or {}
        message = data.get("payload") or {}
        recipients = message.get("to") or [{}]
        status = TELNYX_STATUSES.get((recipients[0] or {}).get("status"))
        if status is None or not message.get("id"):
            return {"updated": 0}
        errors = message.get("errors") or []
        error_message = "; ".join(err.get("detail") or err.get("title", "") for err in errors) or None
        updated = svc.communications.update_status_by_provider_id(message["id"], status, error_message)
        return {"updated": updated}

    @app.post("/api/v1/hooks/mailgun")
    def mailgun_status(payload: Dict[str, Any], svc: Services = Depends(get_services)):
        event = payload.get("event-data") or {}
        status = MAILGUN_STATUSES.get(event.get("event"))
        message_id = ((event.get("message") or {}).get("headers") or {}).get("message-id")
        if status is None or not message_id:
            return {"updated": 0}
        error_message = None
        if status == CommunicationStatus.FAILED:
            error_message = (event.get("delivery-status") or {}).get("message") or event.get("reason")
        updated = svc.communications.update_status_by_provider_id(message_id.strip("<>"), status, error_message)
        return {"updated": updated}

    @app.get("/api/v1/portal/{token}", response_model=PortalDocument)
    def portal_lookup(token: str, svc: Services = Depends(get_services)):
        document = svc.portal.resolve(token)
        if document is None:
            raise HTTPException(status_code=404, detail="Invalid or expired portal link")
        return document

    @app.post("/api/v1/admin/process", response_model=TickSummary)
    async def process_now(svc: Services = Depends(get_services)):
        return await svc.processor.tick()

    @app.post("/api/v1/admin/stop-and-clear")
    async def stop_and_clear(payload: StopAndClearRequest, svc: Services = Depends(get_services)):
        expired = await svc.processor.maintenance.stop_and_clear(payload.older_than_hours)
        return {"expired": expired}

    @app.get("/api/v1/admin/logs", response_model=List[AutomationExecutionLog])
    def list_logs(status: LogStatus = LogStatus.PENDING, limit: int = 50, svc: Services = Depends(get_services)):
        return svc.logs.list_by_status(status, limit=limit)

    @app.post("/api/v1/admin/logs/{log_id}/cancel", response_model=AutomationExecutionLog)
    async def cancel_log(log_id: str, svc: Services = Depends(get_services)):
        existing = svc.logs.get(log_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Execution log not found")
        cancelled = await svc.processor.maintenance.cancel(log_id)
        if cancelled is None:
            raise HTTPException(status_code=409, detail=f"Execution log is {existing.status.value}; only pending logs can be cancelled")
        return cancelled

    @app.post("/api/v1/admin/logs/{log_id}/requeue", response_model=AutomationExecutionLog)
    async def requeue_log(log_id: str, svc: Services = Depends(get_services)):
        try:
            requeued = await svc.processor.maintenance.requeue(log_id)
        except InvalidTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        if requeued is None:
            raise HTTPException(status_code=404, detail="Execution log not found")
        return requeued

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8050)
