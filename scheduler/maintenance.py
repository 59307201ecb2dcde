import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field

from api_clients.log_client import ExecutionLogClient
from models.execution_log import AutomationExecutionLog

logger = logging.getLogger("automation_service")


class SweepResult(BaseModel):
    expired_pending: int = 0
    failed_leases: List[str] = Field(default_factory=list)


class LogMaintenance:
    """
    Housekeeping for execution logs.

    sweep() runs at the start of every processor tick: pending rows still
    unclaimed a stale window after they fell due become expired, and running
    rows whose lease ran out (the processor died mid-run) become failed.
    Both moves only go forward; re-running work is always an explicit requeue.
    """

    def __init__(self, log_client: ExecutionLogClient, stale_pending_hours: float = 24.0):
        self.log_client = log_client
        self.stale_after = timedelta(hours=stale_pending_hours)

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        expired = await asyncio.to_thread(self.log_client.expire_stale_pending, self.stale_after, now)
        reaped = await asyncio.to_thread(self.log_client.fail_expired_leases, now)
        return SweepResult(expired_pending=expired, failed_leases=reaped)

    async def stop_and_clear(self, older_than_hours: Optional[float] = None) -> int:
        older_than = timedelta(hours=older_than_hours) if older_than_hours is not None else None
        return await asyncio.to_thread(self.log_client.stop_and_clear, older_than)

    async def cancel(self, log_id: str) -> Optional[AutomationExecutionLog]:
        return await asyncio.to_thread(self.log_client.cancel, log_id)

    async def requeue(self, log_id: str) -> Optional[AutomationExecutionLog]:
        return await asyncio.to_thread(self.log_client.requeue, log_id)
