"""Decide whether a failed webhook should be retried by the provider.

Recoverable failures answer 500 so Stripe retries later; anything else answers
200 so a payload that can never succeed is not redelivered for days.
"""
import redis
import stripe
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from billing_webhooks.core.exceptions import NonRecoverableProcessingError, RecoverableProcessingError

RECOVERABLE_PREFIX = "[RECOVERABLE] "

RECOVERABLE_TYPES = (
    OperationalError,
    PoolTimeoutError,
    stripe.APIConnectionError,
    stripe.RateLimitError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
    ConnectionError,
    TimeoutError,
)

RECOVERABLE_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "socket",
    "econnrefused",
    "econnreset",
    "reset",
    "deadlock",
    "lock wait",
    "rate limit",
    "too many requests",
)


def is_recoverable(error: BaseException) -> bool:
    if isinstance(error, RecoverableProcessingError):
        return True
    if isinstance(error, NonRecoverableProcessingError):
        return False
    if isinstance(error, RECOVERABLE_TYPES):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True

    # Untyped errors: fall back to what the driver put in the message
    message = str(error).lower()
    name = type(error).__name__.lower()
    return any(marker in message or marker in name for marker in RECOVERABLE_MARKERS)


def format_error(error: BaseException, recoverable: bool) -> str:
    message = str(error) or type(error).__name__
    return f"{RECOVERABLE_PREFIX}{message}" if recoverable else message
