"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from billing_webhooks.models.base import Base
from billing_webhooks.models.organization import Organization
from billing_webhooks.models.plan import Plan, Addon
from billing_webhooks.models.subscription import Subscription, SubscriptionStatus
from billing_webhooks.models.subscription_addon import SubscriptionAddon, AddonStatus
from billing_webhooks.models.payment import Payment, PaymentStatus
from billing_webhooks.models.audit_log import AuditLog
from billing_webhooks.models.webhook_event import WebhookEvent, WebhookEventStatus

# Export all for convenience
__all__ = [
    "Base", "Organization", "Plan", "Addon",
    "Subscription", "SubscriptionStatus", "SubscriptionAddon", "AddonStatus",
    "Payment", "PaymentStatus", "AuditLog", "WebhookEvent", "WebhookEventStatus"
]
