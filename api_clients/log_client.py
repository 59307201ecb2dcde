from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from api_clients.base_client import TableStore
from models.execution_log import (
    ActionResult,
    AutomationExecutionLog,
    LogStatus,
    sources_for,
)
from utils.errors import InvalidTransitionError
from utils.time_utils import to_iso, utcnow
import logging

logger = logging.getLogger("automation_service")

LOGS_TABLE = "automation_execution_logs"

_TIMESTAMP_FIELDS = ("created_at", "scheduled_for", "started_at", "completed_at", "lease_expires_at")

REQUEUEABLE = {LogStatus.FAILED, LogStatus.EXPIRED, LogStatus.CANCELLED}


def _to_row(log: AutomationExecutionLog) -> Dict[str, Any]:
    row = log.model_dump(mode="json", exclude_none=True)
    for field in _TIMESTAMP_FIELDS:
        value = getattr(log, field)
        if value is not None:
            row[field] = to_iso(value)
    return row


class ExecutionLogClient:
    """
    Reads and writes automation_execution_logs.

    Every status change is a conditional update keyed on the statuses the
    target may legally be reached from, so a log can never move backwards
    and two writers racing on the same row cannot both win.
    """

    def __init__(self, store: TableStore):
        self.store = store

    def create_pending(self,
                       workflow_id: str,
                       trigger_context: Dict[str, Any],
                       organization_id: Optional[str] = None,
                       trigger_type: Optional[str] = None,
                       scheduled_for: Optional[datetime] = None,
                       requeued_from: Optional[str] = None) -> AutomationExecutionLog:
        now = utcnow()
        log = AutomationExecutionLog(
            workflow_id=workflow_id,
            organization_id=organization_id,
            trigger_type=trigger_type,
            trigger_context=trigger_context,
            status=LogStatus.PENDING,
            created_at=now,
            scheduled_for=scheduled_for or now,
            requeued_from=requeued_from,
        )
        row = self.store.insert(LOGS_TABLE, _to_row(log))
        created = AutomationExecutionLog.model_validate(row)
        logger.info(f"Execution log {created.id} created for workflow {workflow_id} (pending)")
        return created

    def get(self, log_id: str) -> Optional[AutomationExecutionLog]:
        rows = self.store.select(LOGS_TABLE, [("id", "eq", log_id)], limit=1)
        return AutomationExecutionLog.model_validate(rows[0]) if rows else None

    def list_by_status(self, status: LogStatus, limit: Optional[int] = None) -> List[AutomationExecutionLog]:
        rows = self.store.select(LOGS_TABLE, [("status", "eq", LogStatus(status).value)],
                                 order_by="created_at", limit=limit)
        return [AutomationExecutionLog.model_validate(r) for r in rows]

    def list_pending(self, limit: int, now: Optional[datetime] = None) -> List[AutomationExecutionLog]:
        """Oldest-first batch of pending logs whose scheduled time has come."""
        now = now or utcnow()
        rows = self.store.select(
            LOGS_TABLE,
            [("status", "eq", LogStatus.PENDING.value), ("scheduled_for", "lte", to_iso(now))],
            order_by="created_at",
            limit=limit,
        )
        return [AutomationExecutionLog.model_validate(r) for r in rows]

    def _transition(self, log_id: str, target: LogStatus, values: Dict[str, Any]) -> Optional[AutomationExecutionLog]:
        payload = dict(values)
        payload["status"] = target.value
        rows = self.store.update(
            LOGS_TABLE,
            payload,
            [("id", "eq", log_id), ("status", "in", sources_for(target))],
        )
        if not rows:
            return None
        return AutomationExecutionLog.model_validate(rows[0])

    def claim(self, log_id: str, lease_seconds: float, now: Optional[datetime] = None) -> Optional[AutomationExecutionLog]:
        """
        Moves a log from pending to running.

        Returns None when another processor got there first (zero rows matched
        "id = X and status = pending").
        """
        now = now or utcnow()
        claimed = self._transition(log_id, LogStatus.RUNNING, {
            "started_at": to_iso(now),
            "lease_expires_at": to_iso(now + timedelta(seconds=lease_seconds)),
        })
        if claimed is None:
            logger.info(f"Execution log {log_id} already claimed elsewhere, skipping")
        return claimed

    def complete(self, log_id: str, results: List[ActionResult]) -> Optional[AutomationExecutionLog]:
        return self._transition(log_id, LogStatus.COMPLETED, {
            "completed_at": to_iso(utcnow()),
            "actions_executed": [r.model_dump(mode="json") for r in results],
            "error_message": None,
        })

    def fail(self, log_id: str, error_message: str,
             results: Optional[List[ActionResult]] = None) -> Optional[AutomationExecutionLog]:
        values: Dict[str, Any] = {
            "completed_at": to_iso(utcnow()),
            "error_message": error_message or "Unknown error",
        }
        if results:
            values["actions_executed"] = [r.model_dump(mode="json") for r in results]
        return self._transition(log_id, LogStatus.FAILED, values)

    def cancel(self, log_id: str) -> Optional[AutomationExecutionLog]:
        cancelled = self._transition(log_id, LogStatus.CANCELLED, {"completed_at": to_iso(utcnow())})
        if cancelled:
            logger.info(f"Execution log {log_id} cancelled")
        return cancelled

    def expire_stale_pending(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        rows = self.store.update(
            LOGS_TABLE,
            {
                "status": LogStatus.EXPIRED.value,
                "completed_at": to_iso(now),
                "error_message": "Expired before it could run",
            },
            [("status", "eq", LogStatus.PENDING.value), ("scheduled_for", "lt", to_iso(now - older_than))],
        )
        if rows:
            logger.warning(f"Expired {len(rows)} stale pending execution log(s)")
        return len(rows)

    def fail_expired_leases(self, now: Optional[datetime] = None) -> List[str]:
        """Fails running logs whose processor stopped renewing them (crash mid-run)."""
        now = now or utcnow()
        rows = self.store.update(
            LOGS_TABLE,
            {
                "status": LogStatus.FAILED.value,
                "completed_at": to_iso(now),
                "error_message": "Execution lease expired before the run finished",
            },
            [("status", "eq", LogStatus.RUNNING.value), ("lease_expires_at", "lt", to_iso(now))],
        )
        ids = [r["id"] for r in rows]
        if ids:
            logger.warning(f"Failed {len(ids)} execution log(s) with expired leases: {ids}")
        return ids

    def stop_and_clear(self, older_than: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """Administrative escape hatch: force pending and running logs to expired."""
        now = now or utcnow()
        filters = [("status", "in", sources_for(LogStatus.EXPIRED))]
        if older_than is not None:
            filters.append(("created_at", "lt", to_iso(now - older_than)))
        rows = self.store.update(
            LOGS_TABLE,
            {
                "status": LogStatus.EXPIRED.value,
                "completed_at": to_iso(now),
                "error_message": "Stopped and cleared by administrator",
            },
            filters,
        )
        logger.warning(f"Stop-and-clear expired {len(rows)} execution log(s)")
        return len(rows)

    def requeue(self, log_id: str) -> Optional[AutomationExecutionLog]:
        """Creates a fresh pending log from a finished one; the original is untouched."""
        original = self.get(log_id)
        if original is None:
            return None
        if original.status not in REQUEUEABLE:
            raise InvalidTransitionError(
                f"Execution log {log_id} is {original.status.value}; only failed, expired "
                f"or cancelled logs can be requeued"
            )
        requeued = self.create_pending(
            workflow_id=original.workflow_id,
            trigger_context=original.trigger_context,
            organization_id=original.organization_id,
            trigger_type=original.trigger_type,
            requeued_from=original.id,
        )
        logger.info(f"Execution log {log_id} requeued as {requeued.id}")
        return requeued
