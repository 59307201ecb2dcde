import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from api_clients.change_feed import ChangeEvent
from api_clients.log_client import LOGS_TABLE, ExecutionLogClient
from executor.base_executor import BaseExecutor
from models.execution_log import LogStatus
from scheduler.log_runner import ExecutionLogRunner, RunOutcome
from scheduler.maintenance import LogMaintenance

logger = logging.getLogger("automation_service")


class TickSummary(BaseModel):
    skipped: bool = False
    selected: int = 0
    claimed: int = 0
    completed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    lost: List[str] = Field(default_factory=list)
    superseded: List[str] = Field(default_factory=list)
    expired_pending: int = 0
    failed_leases: List[str] = Field(default_factory=list)


class AutomationProcessor:
    """
    Drives pending execution logs to a terminal status.

    Work arrives two ways: an insert of a pending log on the change feed wakes
    the loop at once, and a sweep every `poll_interval` seconds catches
    anything the feed missed. One tick runs at a time per processor; several
    processors may share a store because each claim is a conditional update.
    """

    def __init__(self,
                 log_client: ExecutionLogClient,
                 executor: BaseExecutor,
                 batch_size: int = 5,
                 poll_interval: float = 5.0,
                 executor_timeout: float = 30.0,
                 lease_seconds: float = 90.0,
                 stale_pending_hours: float = 24.0):
        self.log_client = log_client
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.runner = ExecutionLogRunner(log_client, executor, executor_timeout, lease_seconds)
        self.maintenance = LogMaintenance(log_client, stale_pending_hours)

        self.running = False
        self._tick_lock = asyncio.Lock()
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def is_ticking(self) -> bool:
        return self._tick_lock.locked()

    async def start(self):
        """Runs one tick eagerly, subscribes to the change feed and starts the loop."""
        if self.running:
            return
        self.running = True
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._unsubscribe = self.log_client.store.subscribe(
            LOGS_TABLE, self._on_change, filters=[("status", "eq", LogStatus.PENDING.value)]
        )
        logger.info(f"Automation processor started (batch {self.batch_size}, sweep every {self.poll_interval:g}s)")

        await self._safe_tick()
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self):
        if not self.running:
            return
        self.running = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._wakeup:
            self._wakeup.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("Automation processor stopped.")

    def _on_change(self, event: ChangeEvent):
        # Store writes may come from worker threads; hop back onto our loop.
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wakeup.set)

    async def _run_loop(self):
        while self.running:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            if not self.running:
                break
            await self._safe_tick()

    async def _safe_tick(self):
        try:
            await self.tick()
        except Exception as e:
            logger.error(f"Processor tick failed: {e}")

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Processes up to `batch_size` due pending logs, oldest first.

        An overlapping call returns straight away with skipped=True.
        """
        if self._tick_lock.locked():
            logger.debug("Previous tick still in progress, skipping")
            return TickSummary(skipped=True)

        async with self._tick_lock:
            summary = TickSummary()
            try:
                swept = await self.maintenance.sweep(now)
                summary.expired_pending = swept.expired_pending
                summary.failed_leases = swept.failed_leases
            except Exception as e:
                logger.error(f"Execution log sweep failed: {e}")

            pending = await asyncio.to_thread(self.log_client.list_pending, self.batch_size, now)
            summary.selected = len(pending)
            for log in pending:
                outcome = await self.runner.run_log(log)
                if outcome == RunOutcome.LOST:
                    summary.lost.append(log.id)
                    continue
                summary.claimed += 1
                if outcome == RunOutcome.COMPLETED:
                    summary.completed.append(log.id)
                elif outcome == RunOutcome.FAILED:
                    summary.failed.append(log.id)
                else:
                    summary.superseded.append(log.id)

            if summary.selected:
                logger.info(
                    f"Tick done: {summary.claimed} run, {len(summary.completed)} completed, "
                    f"{len(summary.failed)} failed, {len(summary.superseded)} superseded, "
                    f"{len(summary.lost)} claimed elsewhere"
                )
            return summary
