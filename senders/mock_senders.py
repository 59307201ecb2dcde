from .base_sender import BaseSender, BaseSmsSender
from models.sender_identity import EmailIdentity
from utils.errors import DeliveryError
from typing import Dict, Any, List, Optional
from uuid import uuid4
import asyncio
import logging

logger = logging.getLogger("automation_service")


class MockEmailSender(BaseSender):
    """Logs instead of sending. Used for DRY_RUN and in tests."""

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[Dict[str, Any]] = []

    async def send(self, identity: EmailIdentity, to_email, subject, html_body, text_body=None,
                   reply_to=None, headers=None) -> str:
        logger.info("[MockEmail] Sending email...")
        logger.info(f"   From: {identity.from_field}")
        logger.info(f"   To: {to_email}")
        logger.info(f"   Subject: {subject}")
        await asyncio.sleep(0)
        if self.fail_with:
            raise DeliveryError(self.fail_with, channel="email")
        message_id = f"mock-email-{uuid4()}"
        self.sent.append({
            "id": message_id, "from": identity.from_field, "to": to_email,
            "subject": subject, "html": html_body, "text": text_body,
        })
        return message_id


class MockSmsSender(BaseSmsSender):

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[Dict[str, Any]] = []

    async def send(self, from_number, to_number, message, metadata=None) -> str:
        logger.info(f"[MockSMS] {from_number} -> {to_number}: {message[:60]}")
        await asyncio.sleep(0)
        if self.fail_with:
            raise DeliveryError(self.fail_with, channel="sms")
        message_id = f"mock-sms-{uuid4()}"
        self.sent.append({"id": message_id, "from": from_number, "to": to_number, "text": message})
        return message_id
