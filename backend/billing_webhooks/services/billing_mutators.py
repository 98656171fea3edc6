"""Billing state mutators, one per handled Stripe event type.

Every mutator applies its payload inside a single commit (billing rows plus the
audit entry) and is safe to run twice for the same payload: field writes
converge, addon rows are upserted, and payments / audit entries are not
appended again for the same event.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from billing_webhooks.core.exceptions import NonRecoverableProcessingError
from billing_webhooks.models.audit_log import AuditLog
from billing_webhooks.models.payment import Payment, PaymentStatus
from billing_webhooks.models.plan import Addon, Plan
from billing_webhooks.models.subscription import Subscription, SubscriptionStatus
from billing_webhooks.models.subscription_addon import AddonStatus, SubscriptionAddon
from billing_webhooks.models.webhook_event import WebhookEvent
from billing_webhooks.services.price_registry import get_addon_for_price, get_plan_for_price

logger = logging.getLogger(__name__)

# Mutation results
APPLIED = "applied"
UNMAPPED = "unmapped"  # Subscription not known to this system (no customer -> tenant mapping)

AUDIT_SOURCE = "billing"

STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "trialing": SubscriptionStatus.TRIALING,
    "paused": SubscriptionStatus.PAUSED,
    "incomplete": SubscriptionStatus.UNPAID,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_subscription_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map Stripe's subscription status vocabulary to ours. Unknown values count as ACTIVE."""
    return STATUS_MAP.get((stripe_status or "").lower(), SubscriptionStatus.ACTIVE)


# ============================================================================
# PAYLOAD HELPERS
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    value = getattr(obj, key, default)
    return default if value is None else value


def _require_id(data: Dict[str, Any], key: str, what: str) -> str:
    value = _get_stripe_value(data, key)
    if isinstance(value, dict):
        value = value.get("id")
    if not value or not isinstance(value, str):
        raise NonRecoverableProcessingError(f"{what} payload has no {key}")
    return value


def _timestamp(value: Any, field: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        raise NonRecoverableProcessingError(f"Invalid {field} timestamp: {value!r}")


def _minor_to_major(value: Any, field: str) -> Decimal:
    """Stripe amounts are integers in minor units (cents)"""
    if value is None or isinstance(value, bool):
        raise NonRecoverableProcessingError(f"Invoice payload has no {field}")
    try:
        return (Decimal(int(value)) / Decimal(100)).quantize(Decimal("0.01"))
    except (TypeError, ValueError, InvalidOperation):
        raise NonRecoverableProcessingError(f"Invalid {field}: {value!r}")


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription id of an invoice (top-level field, or parent.subscription_details on newer API versions)"""
    subscription = _get_stripe_value(invoice, "subscription")
    if subscription is None:
        details = _get_stripe_value(_get_stripe_value(invoice, "parent"), "subscription_details")
        subscription = _get_stripe_value(details, "subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription or None


def _find_subscription(stripe_subscription_id: str, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.stripe_subscription_id == stripe_subscription_id
    ).first()


@contextmanager
def billing_transaction(db: Session):
    """Commit everything written in the block at once, or nothing."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def _append_audit(
    db: Session,
    webhook_event: WebhookEvent,
    organization_id: int,
    action: str,
    resource: str,
    resource_id: Optional[str],
    metadata: Dict[str, Any]
) -> Optional[AuditLog]:
    already_logged = db.query(AuditLog).filter(
        AuditLog.stripe_event_id == webhook_event.event_id,
        AuditLog.action == action
    ).first()
    if already_logged:
        logger.info(f"Audit entry {action} for event {webhook_event.event_id} already exists")
        return None

    entry = AuditLog(
        organization_id=organization_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        source=AUDIT_SOURCE,
        stripe_event_id=webhook_event.event_id,
        webhook_event_id=webhook_event.id,
        audit_metadata=metadata
    )
    db.add(entry)
    return entry


def _record_payment(
    db: Session,
    webhook_event: WebhookEvent,
    subscription: Subscription,
    invoice: Dict[str, Any],
    amount: Decimal,
    currency: str,
    status: PaymentStatus
) -> Optional[Payment]:
    invoice_id = _get_stripe_value(invoice, "id")
    existing = db.query(Payment).filter(Payment.stripe_event_id == webhook_event.event_id).first()
    if existing:
        logger.info(f"Payment for event {webhook_event.event_id} (invoice {invoice_id}) already recorded")
        return None

    payment = Payment(
        organization_id=subscription.organization_id,
        subscription_id=subscription.id,
        amount=amount,
        currency=currency,
        status=status.value,
        stripe_invoice_id=invoice_id,
        stripe_payment_intent_id=_get_stripe_value(invoice, "payment_intent"),
        stripe_event_id=webhook_event.event_id,
        payment_metadata={"invoiceId": invoice_id}
    )
    db.add(payment)
    return payment


# ============================================================================
# SUBSCRIPTION HANDLERS
# ============================================================================

def _period_bounds(data: Dict[str, Any], items: list):
    """Billing period from the subscription, or its first item on newer API versions"""
    start = _get_stripe_value(data, "current_period_start")
    end = _get_stripe_value(data, "current_period_end")
    if (start is None or end is None) and items:
        start = start if start is not None else _get_stripe_value(items[0], "current_period_start")
        end = end if end is not None else _get_stripe_value(items[0], "current_period_end")
    return _timestamp(start, "current_period_start"), _timestamp(end, "current_period_end")


def handle_subscription_upserted(data: Dict[str, Any], webhook_event: WebhookEvent, db: Session) -> str:
    """customer.subscription.created / customer.subscription.updated"""
    stripe_subscription_id = _require_id(data, "id", "Subscription")

    sub_record = _find_subscription(stripe_subscription_id, db)
    if not sub_record:
        # Provisioning needs a customer -> organization mapping that this pipeline does not own
        logger.warning(f"No subscription record for {stripe_subscription_id}; marking event unmapped")
        return UNMAPPED

    items = _get_stripe_value(_get_stripe_value(data, "items"), "data", []) or []

    plan = None
    addon_updates = {}
    for item in items:
        price_id = _get_stripe_value(_get_stripe_value(item, "price"), "id")
        quantity = _get_stripe_value(item, "quantity", 1)

        plan_slug = get_plan_for_price(price_id)
        if plan_slug and plan is None:
            plan = db.query(Plan).filter(Plan.slug == plan_slug).first()
            if plan is None:
                logger.warning(f"Price {price_id} maps to plan '{plan_slug}' but no such plan exists")

        addon_code = get_addon_for_price(price_id)
        if addon_code:
            addon = db.query(Addon).filter(Addon.slug == addon_code).first()
            if addon:
                addon_updates[addon.id] = (addon, int(quantity))
            else:
                logger.warning(f"Price {price_id} maps to addon '{addon_code}' but no such addon exists")

    status = map_subscription_status(_get_stripe_value(data, "status"))
    period_start, period_end = _period_bounds(data, items)
    cancel_at_period_end = _get_stripe_value(data, "cancel_at_period_end")
    action = "subscription.created" if webhook_event.event_type.endswith(".created") else "subscription.updated"

    with billing_transaction(db):
        if plan is not None:
            sub_record.plan_id = plan.id
        sub_record.status = status.value
        if period_start:
            sub_record.current_period_start = period_start
        if period_end:
            sub_record.current_period_end = period_end
        if cancel_at_period_end is not None:
            sub_record.cancel_at_period_end = bool(cancel_at_period_end)
        customer_id = _get_stripe_value(data, "customer")
        if isinstance(customer_id, str):
            sub_record.stripe_customer_id = customer_id

        for addon, quantity in addon_updates.values():
            link = db.query(SubscriptionAddon).filter(
                SubscriptionAddon.subscription_id == sub_record.id,
                SubscriptionAddon.addon_id == addon.id
            ).first()
            if link is None:
                link = SubscriptionAddon(subscription_id=sub_record.id, addon_id=addon.id)
                db.add(link)
            link.quantity = quantity
            link.status = AddonStatus.ACTIVE.value

        _append_audit(
            db, webhook_event, sub_record.organization_id,
            action=action,
            resource="subscription",
            resource_id=str(sub_record.id),
            metadata={
                "stripeSubscriptionId": stripe_subscription_id,
                "status": status.value,
                "planId": sub_record.plan_id,
                "addons": [
                    {"addonCode": addon.slug, "quantity": quantity}
                    for addon, quantity in addon_updates.values()
                ],
            }
        )

    logger.info(
        f"Updated subscription {stripe_subscription_id} for organization {sub_record.organization_id} "
        f"(status={status.value}, addons={len(addon_updates)})"
    )
    return APPLIED


def handle_subscription_deleted(data: Dict[str, Any], webhook_event: WebhookEvent, db: Session) -> str:
    """customer.subscription.deleted"""
    stripe_subscription_id = _require_id(data, "id", "Subscription")

    sub_record = _find_subscription(stripe_subscription_id, db)
    if not sub_record:
        logger.warning(f"Subscription {stripe_subscription_id} not found for deletion")
        return UNMAPPED

    with billing_transaction(db):
        sub_record.status = SubscriptionStatus.CANCELED.value
        for link in sub_record.addons:
            link.status = AddonStatus.CANCELED.value

        _append_audit(
            db, webhook_event, sub_record.organization_id,
            action="subscription.deleted",
            resource="subscription",
            resource_id=str(sub_record.id),
            metadata={"stripeSubscriptionId": stripe_subscription_id}
        )

    logger.info(f"Canceled subscription {stripe_subscription_id}")
    return APPLIED


# ============================================================================
# INVOICE HANDLERS
# ============================================================================

def _apply_invoice(
    invoice: Dict[str, Any],
    webhook_event: WebhookEvent,
    db: Session,
    amount_field: str,
    subscription_status: SubscriptionStatus,
    payment_status: PaymentStatus,
    action: str
) -> str:
    stripe_subscription_id = _invoice_subscription_id(invoice)
    invoice_id = _get_stripe_value(invoice, "id", "unknown")
    if not stripe_subscription_id:
        logger.info(f"Invoice {invoice_id} is not tied to a subscription, nothing to update")
        return APPLIED

    sub_record = _find_subscription(stripe_subscription_id, db)
    if not sub_record:
        logger.warning(f"Subscription {stripe_subscription_id} not found for invoice {invoice_id}")
        return UNMAPPED

    amount = _minor_to_major(_get_stripe_value(invoice, amount_field), amount_field)
    currency = _get_stripe_value(invoice, "currency")
    if not currency or not isinstance(currency, str):
        raise NonRecoverableProcessingError(f"Invoice {invoice_id} has no currency")
    currency = currency.upper()

    with billing_transaction(db):
        sub_record.status = subscription_status.value
        _record_payment(db, webhook_event, sub_record, invoice, amount, currency, payment_status)
        _append_audit(
            db, webhook_event, sub_record.organization_id,
            action=action,
            resource="payment",
            resource_id=invoice_id,
            metadata={"amount": float(amount), "currency": currency}
        )

    logger.info(f"{action} for subscription {stripe_subscription_id}: {amount} {currency}")
    return APPLIED


def handle_invoice_payment_succeeded(invoice: Dict[str, Any], webhook_event: WebhookEvent, db: Session) -> str:
    """invoice.payment_succeeded - a successful charge puts the subscription back in good standing"""
    return _apply_invoice(
        invoice, webhook_event, db,
        amount_field="amount_paid",
        subscription_status=SubscriptionStatus.ACTIVE,
        payment_status=PaymentStatus.SUCCEEDED,
        action="payment.succeeded"
    )


def handle_invoice_payment_failed(invoice: Dict[str, Any], webhook_event: WebhookEvent, db: Session) -> str:
    """invoice.payment_failed"""
    return _apply_invoice(
        invoice, webhook_event, db,
        amount_field="amount_due",
        subscription_status=SubscriptionStatus.PAST_DUE,
        payment_status=PaymentStatus.FAILED,
        action="payment.failed"
    )
