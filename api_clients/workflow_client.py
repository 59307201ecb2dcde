from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from api_clients.base_client import TableStore
from models.workflow import AutomationWorkflow, TriggerType, WorkflowStatus
import logging

logger = logging.getLogger("automation_service")

WORKFLOWS_TABLE = "automation_workflows"


class WorkflowClient:

    def __init__(self, store: TableStore):
        self.store = store

    def get(self, workflow_id: str) -> Optional[AutomationWorkflow]:
        rows = self.store.select(WORKFLOWS_TABLE, [("id", "eq", workflow_id)], limit=1)
        return self._parse(rows[0]) if rows else None

    def list_enabled_for_trigger(self, trigger_type: TriggerType,
                                 organization_id: Optional[str] = None) -> List[AutomationWorkflow]:
        filters = [
            ("trigger_type", "eq", TriggerType(trigger_type).value),
            ("status", "eq", WorkflowStatus.ACTIVE.value),
        ]
        if organization_id:
            filters.append(("organization_id", "eq", organization_id))
        rows = self.store.select(WORKFLOWS_TABLE, filters, order_by="created_at")
        workflows = []
        for row in rows:
            workflow = self._parse(row)
            if workflow is not None:
                workflows.append(workflow)
        return workflows

    def create(self, workflow: AutomationWorkflow) -> AutomationWorkflow:
        row = self.store.insert(WORKFLOWS_TABLE, workflow.model_dump(mode="json"))
        return AutomationWorkflow.model_validate(row)

    @staticmethod
    def _parse(row: Dict[str, Any]) -> Optional[AutomationWorkflow]:
        try:
            return AutomationWorkflow.model_validate(row)
        except ValidationError as e:
            # One malformed workflow must not stop the others from firing.
            logger.error(f"Skipping malformed workflow {row.get('id')}: {e}")
            return None
