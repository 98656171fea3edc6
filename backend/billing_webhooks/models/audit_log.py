"""AuditLog model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Index
from datetime import datetime, timezone
from billing_webhooks.models.base import Base


class AuditLog(Base):
    """Append-only audit trail of billing state changes"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(100), nullable=False)  # 'subscription.updated', 'payment.failed', ...
    resource = Column(String(50), nullable=False)  # 'subscription', 'payment'
    resource_id = Column(String(255), nullable=True)
    source = Column(String(50), nullable=False, default="billing")
    stripe_event_id = Column(String(255), nullable=True, index=True)  # Triggering provider event
    webhook_event_id = Column(Integer, ForeignKey("stripe_webhook_events.id", ondelete="SET NULL"), nullable=True)
    audit_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    __table_args__ = (
        Index('ix_audit_logs_event_action', 'stripe_event_id', 'action'),
    )
