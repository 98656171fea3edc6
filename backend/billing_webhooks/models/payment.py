"""Payment model"""
import enum
from sqlalchemy import Column, Integer, String, Numeric, JSON, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime, timezone
from billing_webhooks.models.base import Base


class PaymentStatus(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Payment(Base):
    """Append-only record of an invoice charge attempt"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Major units (50.00), not cents
    currency = Column(String(3), nullable=False)  # Upper-case ISO code
    status = Column(String(20), nullable=False)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    stripe_event_id = Column(String(255), nullable=True)
    payment_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # One row per triggering event; each dunning retry on an invoice arrives as a new event
    __table_args__ = (
        UniqueConstraint('stripe_event_id', name='uq_payments_stripe_event_id'),
    )

