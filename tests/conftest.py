import asyncio
import pytest
from typing import Any, Dict, List, Optional

from api_clients.communication_client import CommunicationLogClient
from api_clients.log_client import ExecutionLogClient
from api_clients.memory_store import InMemoryTableStore
from api_clients.portal_client import PortalTokenClient
from api_clients.settings_client import OrganizationSettingsClient
from api_clients.workflow_client import WorkflowClient
from executor.base_executor import BaseExecutor
from executor.delivery import DeliveryService
from executor.template_renderer import TemplateRenderer
from executor.trigger_emitter import TriggerEmitter
from models.execution_log import ActionResult, ExecutionResult
from models.workflow import AutomationWorkflow
from senders.mock_senders import MockEmailSender, MockSmsSender
from utils.settings import Settings

ORG_ID = "org-1"


class FakeExecutor(BaseExecutor):
    """Records every call; returns `result`, raises `error`, or sleeps `delay` first."""

    def __init__(self, result: Optional[ExecutionResult] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.result = result or ExecutionResult(
            success=True, results=[ActionResult(action="send_sms", status="success")]
        )
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def run(self, workflow_id, context, execution_log_id=None):
        self.calls.append({"workflow_id": workflow_id, "context": context, "execution_log_id": execution_log_id})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def settings():
    return Settings(
        dry_run=True,
        run_processor=False,
        telnyx_from_number="+15550001111",
        mailgun_domain="mg.example.com",
        default_from_email="office@example.com",
        default_from_name="Acme Plumbing",
        public_site_url="https://app.example.com",
    )


@pytest.fixture
def store():
    return InMemoryTableStore()


@pytest.fixture
def workflow_client(store):
    return WorkflowClient(store)


@pytest.fixture
def log_client(store):
    return ExecutionLogClient(store)


@pytest.fixture
def comm_client(store):
    return CommunicationLogClient(store)


@pytest.fixture
def portal_client(store):
    return PortalTokenClient(store, "https://app.example.com")


@pytest.fixture
def email_sender():
    return MockEmailSender()


@pytest.fixture
def sms_sender():
    return MockSmsSender()


@pytest.fixture
def delivery(store, comm_client, email_sender, sms_sender, settings):
    return DeliveryService(comm_client, email_sender, sms_sender,
                           OrganizationSettingsClient(store), TemplateRenderer(), settings)


@pytest.fixture
def emitter(workflow_client, log_client):
    return TriggerEmitter(workflow_client, log_client, "America/New_York")


@pytest.fixture
def make_workflow(workflow_client):
    counter = {"n": 0}

    def _make(**overrides) -> AutomationWorkflow:
        counter["n"] += 1
        data = {
            "id": f"wf-{counter['n']}",
            "organization_id": ORG_ID,
            "name": "Job completed thank-you",
            "trigger_type": "job_status_changed",
            "trigger_conditions": [],
            "action_type": "send_sms",
            "action_config": {"message": "Hi {{client_first_name}}, your job '{{job_title}}' is {{job_status}}."},
            "status": "active",
        }
        data.update(overrides)
        return workflow_client.create(AutomationWorkflow.model_validate(data))

    return _make


@pytest.fixture
def client_snapshot():
    return {"id": "client-1", "name": "Jane Doe", "email": "jane@example.com", "phone": "(555) 123-4567"}


@pytest.fixture
def company_snapshot():
    return {"name": "Acme Plumbing", "email": "office@example.com", "phone": "+15550001111",
            "timezone": "America/New_York"}


@pytest.fixture
def job_status_context(client_snapshot, company_snapshot):
    return {
        "organization_id": ORG_ID,
        "job": {"id": "job-1", "title": "Water heater install", "status": "Completed"},
        "previous_status": "In Progress",
        "new_status": "Completed",
        "client": client_snapshot,
        "company": company_snapshot,
    }
