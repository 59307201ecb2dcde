from typing import Optional


class AutomationError(Exception):
    """Base class for every error raised by the automation service."""


class PersistenceError(AutomationError):
    """The table store could not complete a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidContextError(AutomationError):
    """A trigger context snapshot failed validation."""


class InvalidTransitionError(AutomationError):
    """An execution log was asked to move to a status it cannot reach."""


class ExecutorError(AutomationError):
    """The automation executor could not be reached or answered garbage."""


class DeliveryError(AutomationError):
    """A gateway send attempt failed."""

    def __init__(self, message: str, channel: str, communication_id: Optional[str] = None):
        super().__init__(message)
        self.channel = channel
        self.communication_id = communication_id


class InvalidRecipientError(DeliveryError):
    """The recipient address is malformed; no gateway request was made."""
