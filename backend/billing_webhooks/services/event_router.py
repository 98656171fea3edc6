"""Maps Stripe event types to billing mutators"""
from typing import Callable, Dict, Optional

from billing_webhooks.services.billing_mutators import (
    handle_subscription_upserted, handle_subscription_deleted,
    handle_invoice_payment_succeeded, handle_invoice_payment_failed
)

# Anything not listed here is acknowledged and marked IGNORED, so event types
# Stripe adds later never turn into a retry storm.
EVENT_HANDLERS: Dict[str, Callable] = {
    "customer.subscription.created": handle_subscription_upserted,
    "customer.subscription.updated": handle_subscription_upserted,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}

HANDLED_EVENT_TYPES = frozenset(EVENT_HANDLERS)


def resolve_handler(event_type: str) -> Optional[Callable]:
    return EVENT_HANDLERS.get(event_type)
