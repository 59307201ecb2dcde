import asyncio
import logging
from enum import Enum

from api_clients.log_client import ExecutionLogClient
from executor.base_executor import BaseExecutor
from models.execution_log import AutomationExecutionLog

logger = logging.getLogger("automation_service")


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    # Another processor claimed the log first; nothing ran here.
    LOST = "lost"
    # Ran here, but the row was moved to a terminal status before the result was written.
    SUPERSEDED = "superseded"


class ExecutionLogRunner:
    """Claims one pending log, runs it through the executor and records the outcome."""

    def __init__(self,
                 log_client: ExecutionLogClient,
                 executor: BaseExecutor,
                 executor_timeout: float = 30.0,
                 lease_seconds: float = 90.0):
        self.log_client = log_client
        self.executor = executor
        self.executor_timeout = executor_timeout
        self.lease_seconds = lease_seconds

    async def run_log(self, log: AutomationExecutionLog) -> RunOutcome:
        """
        Never retries. A failed log stays failed until an operator requeues it.
        """
        claimed = await asyncio.to_thread(self.log_client.claim, log.id, self.lease_seconds)
        if claimed is None:
            return RunOutcome.LOST

        logger.info(f"Execution log {log.id} claimed, running workflow {log.workflow_id}")
        try:
            result = await asyncio.wait_for(
                self.executor.run(log.workflow_id, log.trigger_context, execution_log_id=log.id),
                timeout=self.executor_timeout,
            )
        except asyncio.TimeoutError:
            return await self._fail(log, f"Executor timed out after {self.executor_timeout:g}s")
        except Exception as e:
            return await self._fail(log, f"{type(e).__name__}: {e}" if str(e) else type(e).__name__)

        if not result.success:
            return await self._fail(log, result.error or "Executor reported failure", result.results)

        updated = await asyncio.to_thread(self.log_client.complete, log.id, result.results)
        if updated is None:
            logger.warning(f"Execution log {log.id} left running state before it could be completed")
            return RunOutcome.SUPERSEDED
        logger.info(f"Execution log {log.id} completed ({len(result.results)} action(s))")
        return RunOutcome.COMPLETED

    async def _fail(self, log: AutomationExecutionLog, error: str, results=None) -> RunOutcome:
        logger.error(f"Execution log {log.id} failed: {error}")
        updated = await asyncio.to_thread(self.log_client.fail, log.id, error, results)
        if updated is None:
            logger.warning(f"Execution log {log.id} left running state before it could be failed")
            return RunOutcome.SUPERSEDED
        return RunOutcome.FAILED
