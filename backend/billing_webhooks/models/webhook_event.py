"""WebhookEvent model"""
import enum
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from billing_webhooks.models.base import Base


class WebhookEventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"
    UNMAPPED = "UNMAPPED"  # Handled type, but the subscription is unknown here


class WebhookEvent(Base):
    """Stripe webhook event ledger for idempotency"""
    __tablename__ = "stripe_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=WebhookEventStatus.PENDING.value, index=True)
    payload = Column(JSON, nullable=False)
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    provider_created_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
