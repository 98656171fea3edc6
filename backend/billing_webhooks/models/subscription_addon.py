"""SubscriptionAddon model"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from billing_webhooks.models.base import Base


class AddonStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"


class SubscriptionAddon(Base):
    """Addon attached to a subscription with a quantity"""
    __tablename__ = "subscription_addons"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    addon_id = Column(Integer, ForeignKey("addons.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    status = Column(String(20), nullable=False, default=AddonStatus.ACTIVE.value)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    subscription = relationship("Subscription", back_populates="addons")
    addon = relationship("Addon")

    __table_args__ = (
        UniqueConstraint('subscription_id', 'addon_id', name='uq_subscription_addons_subscription_addon'),
    )
