import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from api_clients.portal_client import PortalTokenClient
from api_clients.workflow_client import WorkflowClient
from executor.base_executor import BaseExecutor
from executor.delivery import DeliveryService
from executor.variables import build_template_variables
from models.communication_log import DocumentType
from models.execution_log import ActionResult, ActionStatus, ExecutionResult
from models.trigger_context import BaseTriggerContext, MissedCallContext, load_trigger_context
from models.workflow import ActionType, AutomationWorkflow, Channel
from utils.errors import AutomationError, DeliveryError

logger = logging.getLogger("automation_service")


class LocalAutomationExecutor(BaseExecutor):
    """
    In-process executor.

    Loads the workflow, renders its message against the stored context and
    sends on the primary channel. When the workflow enables a fallback and
    the primary send fails, the fallback channel is tried once.
    """

    def __init__(self,
                 workflow_client: WorkflowClient,
                 delivery: DeliveryService,
                 portal_client: Optional[PortalTokenClient] = None,
                 default_timezone: str = "America/New_York"):
        self.workflow_client = workflow_client
        self.delivery = delivery
        self.portal_client = portal_client
        self.default_timezone = default_timezone

    async def run(self, workflow_id: str, context: Dict[str, Any],
                  execution_log_id: Optional[str] = None) -> ExecutionResult:
        workflow = await asyncio.to_thread(self.workflow_client.get, workflow_id)
        if workflow is None:
            return ExecutionResult(success=False, error=f"Workflow {workflow_id} not found")
        if not workflow.is_enabled:
            return ExecutionResult(success=False, error=f"Workflow {workflow_id} is {workflow.status.value}")

        try:
            typed = load_trigger_context(context)
        except AutomationError as e:
            return ExecutionResult(success=False, error=str(e))

        if workflow.action_type == ActionType.WAIT:
            return ExecutionResult(success=True, results=[
                ActionResult(action=ActionType.WAIT.value, status=ActionStatus.SUCCESS, detail="Nothing to send"),
            ])

        portal_link = await asyncio.to_thread(self._portal_link, typed)
        variables = build_template_variables(typed, self.default_timezone, portal_link)
        document_type, document_id = self._document_ref(typed)

        results: List[ActionResult] = []
        for channel in self._channels(workflow):
            result = await self._attempt(workflow, channel, typed, variables, document_type, document_id,
                                         execution_log_id)
            results.append(result)
            if result.status == ActionStatus.SUCCESS:
                return ExecutionResult(success=True, results=results)

        errors = "; ".join(str(r.detail) for r in results if r.detail)
        return ExecutionResult(success=False, results=results, error=errors or "No channel available")

    @staticmethod
    def _channels(workflow: AutomationWorkflow) -> List[Channel]:
        primary = workflow.primary_channel
        channels = [primary] if primary else []
        config = workflow.multi_channel_config
        if config.fallback_enabled and config.fallback_channel and config.fallback_channel != primary:
            channels.append(config.fallback_channel)
        return channels

    async def _attempt(self, workflow: AutomationWorkflow, channel: Channel, context: BaseTriggerContext,
                       variables: Dict[str, Any], document_type: Optional[DocumentType],
                       document_id: Optional[str], execution_log_id: Optional[str]) -> ActionResult:
        action = f"send_{channel.value}"
        config = workflow.action_config
        common = {
            "organization_id": context.organization_id or workflow.organization_id,
            "variables": variables,
            "document_type": document_type,
            "document_id": document_id,
            "execution_log_id": execution_log_id,
        }
        try:
            if channel == Channel.SMS:
                sent = await self.delivery.send_sms(to=self._phone_for(context), message=config.message, **common)
            else:
                body_html = config.body_html or config.message.replace("\n", "<br>")
                subject = config.subject or "Message from {{company_name}}"
                sent = await self.delivery.send_email(
                    to=context.client.email if context.client else "",
                    subject=subject,
                    body_html=body_html,
                    **common,
                )
        except DeliveryError as e:
            logger.warning(f"Workflow {workflow.id}: {action} failed: {e}")
            return ActionResult(action=action, status=ActionStatus.FAILED, detail=str(e))

        return ActionResult(action=action, status=ActionStatus.SUCCESS,
                            detail={"provider_id": sent.provider_id, "communication_id": sent.communication_id})

    @staticmethod
    def _phone_for(context: BaseTriggerContext) -> str:
        if isinstance(context, MissedCallContext):
            return context.caller_phone
        return context.client.phone if context.client and context.client.phone else ""

    @staticmethod
    def _document_ref(context: BaseTriggerContext) -> Tuple[Optional[DocumentType], Optional[str]]:
        estimate = getattr(context, "estimate", None)
        if estimate is not None:
            return DocumentType.ESTIMATE, estimate.id
        invoice = getattr(context, "invoice", None)
        if invoice is not None:
            return DocumentType.INVOICE, invoice.id
        return None, None

    def _portal_link(self, context: BaseTriggerContext) -> Optional[str]:
        document_type, document_id = self._document_ref(context)
        if self.portal_client is None or document_type is None:
            return None
        snapshot = getattr(context, document_type.value)
        token = snapshot.portal_access_token
        if not token:
            try:
                token = self.portal_client.ensure_token(document_type, document_id)
            except AutomationError as e:
                logger.warning(f"No portal link for {document_type.value} {document_id}: {e}")
                return None
        return self.portal_client.portal_url(token)
