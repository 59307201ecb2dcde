import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from api_clients.log_client import ExecutionLogClient
from api_clients.workflow_client import WorkflowClient
from executor.conditions import evaluate_conditions
from executor.delivery_window import next_delivery_time
from models.execution_log import AutomationExecutionLog
from models.trigger_context import BaseTriggerContext, parse_trigger_context
from models.workflow import ActionDelay, AutomationWorkflow, DelayType, TriggerType
from utils.time_utils import utcnow

logger = logging.getLogger("automation_service")

_DELAY_UNITS = {
    DelayType.MINUTES: "minutes",
    DelayType.HOURS: "hours",
    DelayType.DAYS: "days",
}


def delay_to_timedelta(delay: ActionDelay) -> timedelta:
    unit = _DELAY_UNITS.get(delay.type)
    if unit is None or delay.value <= 0:
        return timedelta(0)
    return timedelta(**{unit: delay.value})


class TriggerEmitter:
    """
    Turns business events into pending execution logs.

    Nothing here talks to a gateway. The caller's own operation (saving a
    job, sending an invoice) must succeed whether or not an automation could
    be scheduled, so lookup and insert failures are logged and dropped.
    """

    def __init__(self,
                 workflow_client: WorkflowClient,
                 log_client: ExecutionLogClient,
                 default_timezone: str = "America/New_York",
                 clock: Callable[[], datetime] = utcnow):
        self.workflow_client = workflow_client
        self.log_client = log_client
        self.default_timezone = default_timezone
        self.clock = clock

    def on_event(self, event_type: Union[TriggerType, str],
                 context: Union[Dict[str, Any], BaseTriggerContext]) -> List[AutomationExecutionLog]:
        """
        Schedules one pending log per enabled workflow whose conditions match.

        Raises InvalidContextError when `context` does not fit `event_type`;
        that is a caller bug, not a scheduling failure.
        """
        typed = parse_trigger_context(event_type, context)
        snapshot = typed.model_dump(mode="json")
        trigger_type = TriggerType(typed.event_type)

        try:
            workflows = self.workflow_client.list_enabled_for_trigger(trigger_type, typed.organization_id)
        except Exception as e:
            logger.error(f"Could not load workflows for {trigger_type.value}: {e}")
            return []

        if not workflows:
            logger.debug(f"No enabled workflows for {trigger_type.value}")
            return []

        created = []
        for workflow in workflows:
            if not evaluate_conditions(workflow.trigger_conditions, snapshot):
                logger.debug(f"Workflow {workflow.id} conditions not met for {trigger_type.value}")
                continue
            log = self._schedule(workflow, trigger_type, snapshot, typed.organization_id)
            if log is not None:
                created.append(log)

        logger.info(f"Event {trigger_type.value}: {len(created)} of {len(workflows)} workflow(s) scheduled")
        return created

    def _schedule(self, workflow: AutomationWorkflow, trigger_type: TriggerType,
                  snapshot: Dict[str, Any], organization_id: Optional[str]) -> Optional[AutomationExecutionLog]:
        try:
            return self.log_client.create_pending(
                workflow_id=workflow.id,
                trigger_context=snapshot,
                organization_id=workflow.organization_id or organization_id,
                trigger_type=trigger_type.value,
                scheduled_for=self.scheduled_time(workflow),
            )
        except Exception as e:
            logger.error(f"Failed to schedule workflow {workflow.id} for {trigger_type.value}: {e}")
            return None

    def scheduled_time(self, workflow: AutomationWorkflow) -> datetime:
        """Now plus the action delay, pushed into the delivery window if one is set."""
        due = self.clock() + delay_to_timedelta(workflow.action_config.delay)
        return next_delivery_time(workflow.delivery_window, due, self.default_timezone)

    def emit_job_status_changed(self,
                                job_before: Optional[Dict[str, Any]],
                                job_after: Dict[str, Any],
                                client: Optional[Dict[str, Any]] = None,
                                company: Optional[Dict[str, Any]] = None,
                                organization_id: Optional[str] = None) -> List[AutomationExecutionLog]:
        """Emits job_status_changed only when the status really moved."""
        previous = (job_before or {}).get("status")
        current = job_after.get("status")
        if not current or previous == current:
            return []

        context: Dict[str, Any] = {
            "organization_id": organization_id,
            "job": job_after,
            "previous_status": previous,
            "new_status": current,
            "client": client,
            "company": company,
        }
        return self.on_event(TriggerType.JOB_STATUS_CHANGED, context)
