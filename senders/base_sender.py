from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from models.sender_identity import EmailIdentity


class BaseSender(ABC):
    """Email gateway. Returns the provider message id or raises DeliveryError."""

    @abstractmethod
    async def send(self,
             identity: EmailIdentity,
             to_email: str,
             subject: str,
             html_body: str,
             text_body: str = None,
             reply_to: str = None,
             headers: Dict[str, str] = None) -> str:
        pass


class BaseSmsSender(ABC):
    """SMS gateway. Returns the provider message id or raises DeliveryError."""

    @abstractmethod
    async def send(self,
             from_number: str,
             to_number: str,
             message: str,
             metadata: Optional[Dict[str, Any]] = None) -> str:
        pass
