"""Exceptions raised by the webhook pipeline"""


class WebhookError(Exception):
    """Base class for webhook pipeline errors"""


class InvalidSignature(WebhookError):
    """Signature header missing, malformed, mismatched or stale"""


class MalformedPayload(WebhookError):
    """Request body is not a parseable provider event envelope"""


class DuplicateEvent(WebhookError):
    """A ledger record for this event id was created concurrently"""

    def __init__(self, event_id: str):
        super().__init__(f"Webhook event {event_id} already recorded")
        self.event_id = event_id


class InvalidTransition(WebhookError):
    """Ledger status change not allowed by the state machine"""

    def __init__(self, event_id: str, current: str, target: str):
        super().__init__(f"Cannot move webhook event {event_id} from {current} to {target}")
        self.event_id = event_id
        self.current = current
        self.target = target


class ProcessingError(WebhookError):
    """Failure raised while applying an event to billing state"""

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class RecoverableProcessingError(ProcessingError):
    """Transient failure (database, network, locking, rate limits) - provider should retry"""


class NonRecoverableProcessingError(ProcessingError):
    """Bad data or logic failure - retrying the same payload will not help"""


class WebhookNotConfigured(WebhookError):
    """Signing secret missing - deliveries cannot be verified"""
