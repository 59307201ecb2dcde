import logging
from typing import Optional

from api_clients.base_client import RestTableStore, TableStore
from api_clients.change_feed import ChangeFeed
from api_clients.communication_client import CommunicationLogClient
from api_clients.log_client import ExecutionLogClient
from api_clients.memory_store import InMemoryTableStore
from api_clients.portal_client import PortalTokenClient
from api_clients.settings_client import OrganizationSettingsClient
from api_clients.workflow_client import WorkflowClient
from executor.base_executor import BaseExecutor
from executor.delivery import DeliveryService
from executor.engine_builder import EngineBuilder
from executor.remote_executor import RemoteAutomationExecutor
from executor.template_renderer import TemplateRenderer
from executor.trigger_emitter import TriggerEmitter
from executor.workflow_executor import LocalAutomationExecutor
from scheduler.processor import AutomationProcessor
from senders.base_sender import BaseSender, BaseSmsSender
from utils.settings import Settings

logger = logging.getLogger("automation_service")


class Services:
    """Everything the API and the worker need, wired once from Settings."""

    def __init__(self,
                 settings: Settings,
                 store: Optional[TableStore] = None,
                 email_sender: Optional[BaseSender] = None,
                 sms_sender: Optional[BaseSmsSender] = None,
                 executor: Optional[BaseExecutor] = None):
        self.settings = settings
        self.store = store or self._build_store(settings)
        self.feed: ChangeFeed = self.store.feed

        self.workflows = WorkflowClient(self.store)
        self.logs = ExecutionLogClient(self.store)
        self.communications = CommunicationLogClient(self.store)
        self.org_settings = OrganizationSettingsClient(self.store)
        self.portal = PortalTokenClient(self.store, settings.public_site_url)

        if email_sender is None or sms_sender is None:
            built_email, built_sms = EngineBuilder.build(settings)
            email_sender = email_sender or built_email
            sms_sender = sms_sender or built_sms
        self.email_sender = email_sender
        self.sms_sender = sms_sender

        self.renderer = TemplateRenderer()
        self.delivery = DeliveryService(
            self.communications, self.email_sender, self.sms_sender,
            self.org_settings, self.renderer, settings,
        )
        self.executor = executor or self._build_executor(settings)
        self.emitter = TriggerEmitter(self.workflows, self.logs, settings.default_timezone)
        self.processor = AutomationProcessor(
            self.logs,
            self.executor,
            batch_size=settings.batch_size,
            poll_interval=settings.poll_interval_seconds,
            executor_timeout=settings.executor_timeout_seconds,
            lease_seconds=settings.lease_seconds,
            stale_pending_hours=settings.stale_pending_hours,
        )

    @staticmethod
    def _build_store(settings: Settings) -> TableStore:
        feed = ChangeFeed()
        if not settings.supabase_url:
            logger.warning("SUPABASE_URL not set, using the in-memory store (data is lost on restart)")
            return InMemoryTableStore(feed)
        return RestTableStore(settings.supabase_url, settings.supabase_service_key, feed)

    def _build_executor(self, settings: Settings) -> BaseExecutor:
        if settings.executor_mode == "remote":
            return RemoteAutomationExecutor(
                settings.executor_url,
                api_key=settings.supabase_service_key,
                timeout=settings.executor_timeout_seconds,
            )
        return LocalAutomationExecutor(self.workflows, self.delivery, self.portal, settings.default_timezone)


def build_services(settings: Optional[Settings] = None, **overrides) -> Services:
    return Services(settings or Settings.from_env(), **overrides)
