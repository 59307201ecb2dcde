import asyncio
import requests
import logging
from .base_sender import BaseSender
from models.sender_identity import EmailIdentity
from utils.errors import DeliveryError

logger = logging.getLogger("automation_service")


class MailgunSender(BaseSender):
    def __init__(self, credentials: dict):
        self.domain = credentials.get("domain")
        self.api_key = credentials.get("api_key")
        self.base_url = (credentials.get("base_url") or "https://api.mailgun.net/v3").rstrip("/")
        self.timeout = credentials.get("timeout", 30)

    async def send(self, identity: EmailIdentity, to_email: str, subject: str,
                   html_body: str, text_body: str = None, reply_to: str = None, headers: dict = None) -> str:
        # requests is blocking; keep the event loop free while Mailgun answers
        return await asyncio.to_thread(
            self._send_sync, identity, to_email, subject, html_body, text_body, reply_to, headers
        )

    def _send_sync(self, identity: EmailIdentity, to_email: str, subject: str,
                   html_body: str, text_body: str = None, reply_to: str = None, headers: dict = None) -> str:
        """
        Send email via Mailgun API

        Args:
            identity: Sender identity; its domain overrides the configured one
            to_email: Recipient email
            subject: Email subject
            html_body: HTML version of email
            text_body: Plain text version
            reply_to: Optional reply-to address
            headers: Optional custom headers
        """
        domain = identity.domain or self.domain
        if not self.api_key:
            raise DeliveryError("Mailgun API key not configured", channel="email")
        if not domain:
            raise DeliveryError("Mailgun domain not configured", channel="email")

        data = {
            "from": identity.from_field,
            "to": to_email,
            "subject": subject,
            "html": html_body,
        }
        if text_body:
            data["text"] = text_body
        if reply_to:
            data["h:Reply-To"] = reply_to
        if headers:
            for key, value in headers.items():
                data[f"h:{key}"] = value

        try:
            response = requests.post(
                f"{self.base_url}/{domain}/messages",
                auth=("api", self.api_key),
                data=data,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Mailgun send failed: {e}")
            raise DeliveryError(f"Mailgun request failed: {e}", channel="email") from e

        if response.status_code != 200:
            logger.error(f"Mailgun error: {response.status_code} - {response.text}")
            raise DeliveryError(f"Mailgun rejected the message ({response.status_code}): {response.text}",
                                channel="email")

        message_id = (response.json() or {}).get("id")
        if not message_id:
            raise DeliveryError("Mailgun response had no message id", channel="email")
        logger.info(f"Mailgun email sent to {to_email} [{message_id}]")
        return message_id.strip("<>")
