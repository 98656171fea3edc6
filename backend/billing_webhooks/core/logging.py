"""Logging configuration for the application"""
import logging

from billing_webhooks.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Libraries that log every request/statement at INFO
NOISY_LOGGERS = ("stripe", "urllib3", "urllib3.connectionpool", "sqlalchemy.engine", "opentelemetry")

webhook_logger = logging.getLogger("webhook")
security_logger = logging.getLogger("security")


def setup_logging():
    """Configure root logging from LOG_LEVEL"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_webhook_outcome(event_id: str, event_type: str, status: str, status_code: int, error: str = None):
    """One line per delivery so a single grep shows an event's history"""
    message = f"Webhook {event_id} ({event_type}) -> {status} [{status_code}]"
    if error:
        message = f"{message}: {error}"
    if status_code >= 500:
        webhook_logger.warning(message)
    else:
        webhook_logger.info(message)
