import asyncio
import base64
import json
import requests
import logging
from typing import Any, Dict, Optional
from .base_sender import BaseSmsSender
from utils.errors import DeliveryError

logger = logging.getLogger("automation_service")


class TelnyxSender(BaseSmsSender):
    def __init__(self, credentials: dict):
        self.api_key = credentials.get("api_key")
        self.messaging_profile_id = credentials.get("messaging_profile_id")
        self.webhook_url = credentials.get("webhook_url")
        self.base_url = (credentials.get("base_url") or "https://api.telnyx.com/v2").rstrip("/")
        self.timeout = credentials.get("timeout", 30)

    async def send(self, from_number: str, to_number: str, message: str,
                   metadata: Optional[Dict[str, Any]] = None) -> str:
        return await asyncio.to_thread(self._send_sync, from_number, to_number, message, metadata)

    def _send_sync(self, from_number: str, to_number: str, message: str,
                   metadata: Optional[Dict[str, Any]] = None) -> str:
        if not self.api_key:
            raise DeliveryError("Telnyx API key not configured", channel="sms")
        if not from_number:
            raise DeliveryError("No SMS sender number configured", channel="sms")

        payload: Dict[str, Any] = {
            "from": from_number,
            "to": to_number,
            "text": message,
        }
        if self.messaging_profile_id:
            payload["messaging_profile_id"] = self.messaging_profile_id
        if self.webhook_url:
            payload["webhook_url"] = self.webhook_url
        if metadata:
            # Telnyx echoes client_state (base64) back on status webhooks
            payload["client_state"] = base64.b64encode(json.dumps(metadata, sort_keys=True).encode()).decode()

        try:
            response = requests.post(
                f"{self.base_url}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Telnyx send failed: {e}")
            raise DeliveryError(f"Telnyx request failed: {e}", channel="sms") from e

        if response.status_code >= 300:
            detail = response.text
            try:
                errors = response.json().get("errors") or []
                if errors:
                    detail = "; ".join(err.get("detail") or err.get("title", "") for err in errors)
            except ValueError:
                pass
            logger.error(f"Telnyx error: {response.status_code} - {detail}")
            raise DeliveryError(f"Telnyx rejected the message ({response.status_code}): {detail}", channel="sms")

        message_id = ((response.json() or {}).get("data") or {}).get("id")
        if not message_id:
            raise DeliveryError("Telnyx response had no message id", channel="sms")
        logger.info(f"Telnyx SMS sent to {to_number} [{message_id}]")
        return message_id
