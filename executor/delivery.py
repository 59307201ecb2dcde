import asyncio
import html
import logging
import re
from typing import Any, Dict, Optional

from api_clients.communication_client import CommunicationLogClient
from api_clients.settings_client import OrganizationSettingsClient
from executor.template_renderer import TemplateRenderer
from models.communication_log import (
    CommunicationLogEntry,
    CommunicationStatus,
    CommunicationType,
    DocumentType,
    SendResult,
)
from models.sender_identity import EmailIdentity, OrganizationCommunicationSettings
from senders.base_sender import BaseSender, BaseSmsSender
from utils.errors import DeliveryError, InvalidRecipientError
from utils.recipient_validator import is_valid_email, normalize_email, normalize_phone
from utils.settings import Settings

logger = logging.getLogger("automation_service")

_TAG = re.compile(r"<[^>]+>")
_BREAK = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6])\s*/?>", re.IGNORECASE)
_BLANK_LINES = re.compile(r"\n{3,}")


def html_to_text(body_html: str) -> str:
    text = _BREAK.sub("\n", body_html or "")
    text = html.unescape(_TAG.sub("", text))
    return _BLANK_LINES.sub("\n\n", text).strip()


class DeliveryService:
    """
    One outbound attempt per call, SMS or email.

    Every attempt, including one refused for a malformed recipient, leaves
    exactly one row in communication_logs. Failures are raised after the row
    is written so the caller can decide on a fallback channel.
    """

    def __init__(self,
                 comm_client: CommunicationLogClient,
                 email_sender: BaseSender,
                 sms_sender: BaseSmsSender,
                 settings_client: OrganizationSettingsClient,
                 renderer: TemplateRenderer,
                 settings: Settings):
        self.comm_client = comm_client
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.settings_client = settings_client
        self.renderer = renderer
        self.settings = settings

    def _org_settings(self, organization_id: Optional[str]) -> Optional[OrganizationCommunicationSettings]:
        try:
            return self.settings_client.get(organization_id)
        except Exception as e:
            logger.warning(f"Could not load communication settings for {organization_id}: {e}")
            return None

    def resolve_email_identity(self, organization_id: Optional[str],
                               identity: Optional[EmailIdentity] = None) -> EmailIdentity:
        if identity is not None:
            return identity
        org = self._org_settings(organization_id)
        return EmailIdentity(
            from_email=(org and org.default_from_email) or self.settings.default_from_email,
            from_name=(org and org.default_from_name) or self.settings.default_from_name,
            domain=(org and org.mailgun_domain) or self.settings.mailgun_domain or None,
        )

    def resolve_sms_number(self, organization_id: Optional[str], from_number: Optional[str] = None) -> Optional[str]:
        if from_number:
            return from_number
        org = self._org_settings(organization_id)
        return (org and org.sms_from_number) or self.settings.telnyx_from_number or None

    def _render(self, template: Optional[str], variables: Dict[str, Any], channel: str) -> str:
        try:
            return self.renderer.render(template or "", variables)
        except ValueError as e:
            raise DeliveryError(str(e), channel=channel)

    async def _record(self, channel: CommunicationType, recipient: str, content: str,
                status: CommunicationStatus, **fields) -> CommunicationLogEntry:
        entry = CommunicationLogEntry(type=channel, recipient=recipient, content=content, status=status, **fields)
        return await asyncio.to_thread(self.comm_client.record, entry)

    async def _fail(self, error: DeliveryError, channel: CommunicationType, recipient: str, content: str, **fields):
        entry = await self._record(channel, recipient, content, CommunicationStatus.FAILED,
                                   error_message=str(error), **fields)
        error.communication_id = entry.id
        logger.error(f"{channel.value.upper()} to '{recipient}' failed: {error}")
        raise error

    async def send_email(self,
                         to: str,
                         subject: str,
                         body_html: str,
                         body_text: Optional[str] = None,
                         identity: Optional[EmailIdentity] = None,
                         organization_id: Optional[str] = None,
                         variables: Optional[Dict[str, Any]] = None,
                         document_type: Optional[DocumentType] = None,
                         document_id: Optional[str] = None,
                         execution_log_id: Optional[str] = None,
                         reply_to: Optional[str] = None) -> SendResult:
        variables = variables or {}
        fields: Dict[str, Any] = {
            "organization_id": organization_id,
            "document_type": document_type,
            "document_id": document_id,
            "execution_log_id": execution_log_id,
        }
        recipient = normalize_email(to)

        try:
            rendered_subject = self._render(subject, variables, "email")
            rendered_html = self._render(body_html, variables, "email")
            rendered_text = self._render(body_text, variables, "email") if body_text else html_to_text(rendered_html)
        except DeliveryError as e:
            await self._fail(e, CommunicationType.EMAIL, recipient or (to or ""), body_html or "",
                             subject=subject, **fields)

        if not is_valid_email(recipient):
            await self._fail(InvalidRecipientError(f"Invalid email address: '{to}'", channel="email"),
                             CommunicationType.EMAIL, to or "", rendered_html, subject=rendered_subject, **fields)

        sender_identity = await asyncio.to_thread(self.resolve_email_identity, organization_id, identity)
        try:
            provider_id = await self.email_sender.send(
                identity=sender_identity,
                to_email=recipient,
                subject=rendered_subject,
                html_body=rendered_html,
                text_body=rendered_text,
                reply_to=reply_to,
            )
        except DeliveryError as e:
            await self._fail(e, CommunicationType.EMAIL, recipient, rendered_html, subject=rendered_subject, **fields)
        except Exception as e:
            await self._fail(DeliveryError(f"Email gateway error: {e}", channel="email"),
                             CommunicationType.EMAIL, recipient, rendered_html, subject=rendered_subject, **fields)

        entry = await self._record(CommunicationType.EMAIL, recipient, rendered_html, CommunicationStatus.SENT,
                                   subject=rendered_subject, provider_message_id=provider_id,
                                   metadata={"from": sender_identity.from_field}, **fields)
        logger.info(f"Email sent to {recipient} (provider id {provider_id})")
        return SendResult(success=True, provider_id=provider_id, communication_id=entry.id)

    async def send_sms(self,
                       to: str,
                       message: str,
                       from_number: Optional[str] = None,
                       organization_id: Optional[str] = None,
                       variables: Optional[Dict[str, Any]] = None,
                       document_type: Optional[DocumentType] = None,
                       document_id: Optional[str] = None,
                       execution_log_id: Optional[str] = None) -> SendResult:
        variables = variables or {}
        fields: Dict[str, Any] = {
            "organization_id": organization_id,
            "document_type": document_type,
            "document_id": document_id,
            "execution_log_id": execution_log_id,
        }
        recipient = normalize_phone(to)

        try:
            text = self._render(message, variables, "sms")
        except DeliveryError as e:
            await self._fail(e, CommunicationType.SMS, recipient or (to or ""), message or "", **fields)

        if recipient is None:
            await self._fail(InvalidRecipientError(f"Invalid phone number: '{to}'", channel="sms"),
                             CommunicationType.SMS, to or "", text, **fields)
        if not text.strip():
            await self._fail(DeliveryError("SMS message is empty", channel="sms"),
                             CommunicationType.SMS, recipient, text, **fields)

        sender_number = await asyncio.to_thread(self.resolve_sms_number, organization_id, from_number)
        if not sender_number:
            await self._fail(DeliveryError("No SMS sender number configured", channel="sms"),
                             CommunicationType.SMS, recipient, text, **fields)

        try:
            provider_id = await self.sms_sender.send(
                from_number=sender_number,
                to_number=recipient,
                message=text,
                metadata={k: v for k, v in (("organization_id", organization_id),
                                                 ("execution_log_id", execution_log_id)) if v},
            )
        except DeliveryError as e:
            await self._fail(e, CommunicationType.SMS, recipient, text, **fields)
        except Exception as e:
            await self._fail(DeliveryError(f"SMS gateway error: {e}", channel="sms"),
                             CommunicationType.SMS, recipient, text, **fields)

        entry = await self._record(CommunicationType.SMS, recipient, text, CommunicationStatus.SENT,
                                   provider_message_id=provider_id, metadata={"from": sender_number}, **fields)
        logger.info(f"SMS sent to {recipient} (provider id {provider_id})")
        return SendResult(success=True, provider_id=provider_id, communication_id=entry.id)
