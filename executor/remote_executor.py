import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from executor.base_executor import BaseExecutor
from models.execution_log import ActionResult, ExecutionResult
from utils.errors import ExecutorError

logger = logging.getLogger("automation_service")


class RemoteAutomationExecutor(BaseExecutor):
    """
    Calls a deployed executor function over HTTPS.

    Request:  {"workflowId": ..., "context": {...}}
    Response: {"success": bool, "results": [{"action", "status", "detail"}]}

    A non-2xx answer or success=false comes back as a failed result. A
    transport error or an unreadable body raises ExecutorError.
    """

    def __init__(self, url: str, api_key: str = "", timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        if not url:
            raise ValueError("Remote executor requires EXECUTOR_URL")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def run(self, workflow_id: str, context: Dict[str, Any],
                  execution_log_id: Optional[str] = None) -> ExecutionResult:
        return await asyncio.to_thread(self._run_sync, workflow_id, context, execution_log_id)

    def _run_sync(self, workflow_id: str, context: Dict[str, Any],
                  execution_log_id: Optional[str]) -> ExecutionResult:
        payload: Dict[str, Any] = {"workflowId": workflow_id, "context": context}
        if execution_log_id:
            payload["executionLogId"] = execution_log_id

        try:
            response = self.session.post(self.url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Executor request for workflow {workflow_id} failed: {e}")
            raise ExecutorError(f"Executor request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Executor returned {response.status_code} for workflow {workflow_id}")
            return ExecutionResult(
                success=False,
                error=f"Executor returned HTTP {response.status_code}: {response.text[:500]}",
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExecutorError(f"Executor answered with invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise ExecutorError(f"Executor answered with {type(body).__name__}, expected an object")

        try:
            results = [ActionResult.model_validate(r) for r in body.get("results") or []]
        except ValidationError as e:
            raise ExecutorError(f"Executor returned malformed results: {e}") from e

        if not body.get("success"):
            return ExecutionResult(
                success=False,
                results=results,
                error=body.get("error") or "Executor reported failure",
            )
        return ExecutionResult(success=True, results=results)
