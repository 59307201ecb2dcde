import logging
from typing import Any, Dict, List

from senders.base_sender import BaseSender, BaseSmsSender
from senders.mailgun_sender import MailgunSender
from senders.telnyx_sender import TelnyxSender
from senders.mock_senders import MockEmailSender, MockSmsSender
from utils.settings import Settings

logger = logging.getLogger("automation_service")


class EngineBuilder:

    @staticmethod
    def validate_config(settings: Settings) -> List[str]:
        """Returns a list of configuration problems. Empty means both gateways can send."""
        problems = []
        if settings.dry_run:
            return problems
        if not settings.mailgun_api_key:
            problems.append("Mailgun requires 'MAILGUN_API_KEY'")
        if not settings.mailgun_domain:
            problems.append("Mailgun requires 'MAILGUN_DOMAIN' (or per-organization mailgun_domain)")
        if not settings.telnyx_api_key:
            problems.append("Telnyx requires 'TELNYX_API_KEY'")
        return problems

    @staticmethod
    def build_email_sender(settings: Settings) -> BaseSender:
        if settings.dry_run:
            return MockEmailSender()
        config: Dict[str, Any] = {
            "api_key": settings.mailgun_api_key,
            "domain": settings.mailgun_domain,
            "base_url": settings.mailgun_base_url,
        }
        return MailgunSender(config)

    @staticmethod
    def build_sms_sender(settings: Settings) -> BaseSmsSender:
        if settings.dry_run:
            return MockSmsSender()
        config: Dict[str, Any] = {
            "api_key": settings.telnyx_api_key,
            "messaging_profile_id": settings.telnyx_messaging_profile_id,
            "base_url": settings.telnyx_base_url,
        }
        return TelnyxSender(config)

    @staticmethod
    def build(settings: Settings):
        # Missing credentials are not fatal at boot: each send fails and is logged instead.
        for problem in EngineBuilder.validate_config(settings):
            logger.warning(f"Gateway configuration: {problem}")
        return EngineBuilder.build_email_sender(settings), EngineBuilder.build_sms_sender(settings)
