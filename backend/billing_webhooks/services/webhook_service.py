"""Stripe webhook processing pipeline

signature -> ledger lookup/creation -> router -> mutator -> ledger update -> response.
The HTTP status code is the only thing Stripe listens to: 2xx stops retries,
anything else schedules a redelivery.
"""
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional

import redis
from pydantic import ValidationError
from sqlalchemy.orm import Session

from billing_webhooks.core.config import settings
from billing_webhooks.core.exceptions import (
    InvalidSignature, InvalidTransition, MalformedPayload, WebhookNotConfigured
)
from billing_webhooks.core.logging import log_webhook_outcome, webhook_logger
from billing_webhooks.core.metrics import (
    webhook_events_counter, webhook_signature_failures_counter, webhook_processing_seconds
)
from billing_webhooks.core.otel import get_tracer
from billing_webhooks.db.redis import acquire_lock, release_lock, webhook_lock_key
from billing_webhooks.models.webhook_event import WebhookEvent
from billing_webhooks.schemas.webhooks import StripeEventEnvelope, WebhookResponse
from billing_webhooks.services import event_ledger
from billing_webhooks.services.billing_mutators import UNMAPPED
from billing_webhooks.services.event_router import resolve_handler
from billing_webhooks.services.failure_classifier import format_error, is_recoverable
from billing_webhooks.services.signature import verify_signature

logger = webhook_logger


class WebhookOutcome(NamedTuple):
    status_code: int
    body: Dict[str, Any]


def _outcome(envelope: StripeEventEnvelope, status_code: int, **fields) -> WebhookOutcome:
    body = WebhookResponse(**fields)
    webhook_events_counter.labels(event_type=envelope.type, outcome=body.status).inc()
    log_webhook_outcome(envelope.id, envelope.type, body.status, status_code, body.error)
    return WebhookOutcome(status_code, body.model_dump(exclude_none=True))


def parse_event(payload: bytes):
    """Decode the raw body into (envelope, raw dict).

    Raises:
        MalformedPayload: Body is not JSON or lacks id/type
    """
    try:
        raw = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        raise MalformedPayload("Invalid payload")
    if not isinstance(raw, dict):
        raise MalformedPayload("Invalid payload")
    try:
        envelope = StripeEventEnvelope.model_validate(raw)
    except ValidationError as e:
        raise MalformedPayload(f"Invalid event envelope: {e.error_count()} validation error(s)")
    return envelope, raw


def _acquire_event_lock(event_id: str, token: str) -> Optional[bool]:
    """True if held, False if another delivery holds it, None if Redis is unavailable."""
    try:
        return acquire_lock(webhook_lock_key(event_id), token, timeout=settings.WEBHOOK_LOCK_TIMEOUT)
    except redis.exceptions.RedisError as e:
        # The unique event_id and idempotent mutators still protect us without the lock
        logger.warning(f"Could not take webhook lock for {event_id}, continuing without it: {e}")
        return None


def _release_event_lock(event_id: str, token: str):
    try:
        if not release_lock(webhook_lock_key(event_id), token):
            logger.warning(f"Webhook lock for {event_id} expired before processing finished")
    except redis.exceptions.RedisError as e:
        logger.warning(f"Could not release webhook lock for {event_id} (expires on its own): {e}")


def process_stripe_webhook(
    payload: bytes,
    sig_header: Optional[str],
    db: Session
) -> WebhookOutcome:
    """Process Stripe webhook delivery

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe-Signature header
        db: Database session

    Returns:
        WebhookOutcome with the HTTP status code and JSON body

    Raises:
        WebhookNotConfigured: No signing secret configured
        InvalidSignature: Bad, incomplete or stale signature (ledger untouched)
        MalformedPayload: Body is not a Stripe event envelope
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise WebhookNotConfigured("Webhook not configured")

    try:
        verify_signature(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE
        )
    except InvalidSignature:
        webhook_signature_failures_counter.inc()
        raise

    envelope, raw = parse_event(payload)
    return handle_event(envelope, raw, db)


def handle_event(envelope: StripeEventEnvelope, raw: Dict[str, Any], db: Session) -> WebhookOutcome:
    """Apply a verified event, guarded by the advisory lock when enabled."""
    if not settings.WEBHOOK_LOCK_ENABLED:
        return _process_event(envelope, raw, db)

    token = uuid.uuid4().hex
    locked = _acquire_event_lock(envelope.id, token)
    if locked is False:
        logger.info(f"Webhook event {envelope.id} is being processed by another delivery, asking for retry")
        return _outcome(
            envelope, 500,
            received=False, status="failed", error="Event is already being processed", recoverable=True
        )

    try:
        return _process_event(envelope, raw, db)
    finally:
        if locked:
            _release_event_lock(envelope.id, token)


def _process_event(envelope: StripeEventEnvelope, raw: Dict[str, Any], db: Session) -> WebhookOutcome:
    event_id = envelope.id
    event_type = envelope.type
    provider_created_at = (
        datetime.fromtimestamp(envelope.created, tz=timezone.utc) if envelope.created else None
    )

    with get_tracer().start_as_current_span(
        "stripe_webhook.process",
        attributes={"stripe.event_id": event_id, "stripe.event_type": event_type}
    ) as span:
        outcome = _apply_event(envelope, raw, db, provider_created_at)
        span.set_attribute("webhook.outcome", outcome.body.get("status", ""))
        span.set_attribute("http.response.status_code", outcome.status_code)
        return outcome


def _apply_event(
    envelope: StripeEventEnvelope,
    raw: Dict[str, Any],
    db: Session,
    provider_created_at: Optional[datetime]
) -> WebhookOutcome:
    event_id = envelope.id
    event_type = envelope.type

    record, created = event_ledger.get_or_create_event(
        event_id, event_type, raw, db, provider_created_at=provider_created_at
    )

    if not created:
        if event_ledger.is_terminal(record.status):
            return _outcome(
                envelope, 200,
                received=True, status="already_processed", original_status=record.status
            )
        if record.status == event_ledger.FAILED:
            logger.info(f"Webhook event {event_id} previously failed, retrying (attempt {record.attempts + 1})")
            event_ledger.reset_for_retry(record, db)
        else:
            logger.info(f"Webhook event {event_id} found PENDING, re-entering processing")

    handler = resolve_handler(event_type)
    if handler is None:
        try:
            event_ledger.mark_ignored(record, db)
        except InvalidTransition as e:
            return _finished_concurrently(envelope, record, db, e)
        return _outcome(envelope, 200, received=True, status="ignored")

    started = time.perf_counter()
    try:
        result = handler(envelope.data.object, record, db)
    except Exception as e:
        db.rollback()
        recoverable = is_recoverable(e)
        error_detail = format_error(e, recoverable)
        logger.error(
            f"Error processing webhook {event_id} of type {event_type} (recoverable: {recoverable}): {e}",
            exc_info=True
        )
        try:
            event_ledger.mark_failed(record, error_detail, db)
        except InvalidTransition as transition_error:
            return _finished_concurrently(envelope, record, db, transition_error)

        if recoverable:
            # 5xx makes Stripe redeliver; the next attempt resets the row to PENDING
            return _outcome(
                envelope, 500,
                received=False, status="failed", error=str(e), recoverable=True
            )
        # Retrying the same payload cannot succeed, acknowledge it
        return _outcome(
            envelope, 200,
            received=True, status="failed", error=str(e), recoverable=False
        )
    finally:
        webhook_processing_seconds.labels(event_type=event_type).observe(time.perf_counter() - started)

    try:
        if result == UNMAPPED:
            event_ledger.mark_unmapped(record, db, detail="Subscription not mapped to an organization")
            return _outcome(envelope, 200, received=True, status="unmapped")

        event_ledger.mark_processed(record, db)
    except InvalidTransition as e:
        return _finished_concurrently(envelope, record, db, e)
    return _outcome(envelope, 200, received=True, status="processed")


def _finished_concurrently(
    envelope: StripeEventEnvelope,
    record: WebhookEvent,
    db: Session,
    error: InvalidTransition
) -> WebhookOutcome:
    """Another delivery of the same event moved the ledger row while we were applying it."""
    db.rollback()
    db.refresh(record)
    logger.info(f"Webhook event {envelope.id} was settled by a concurrent delivery: {error}")
    if event_ledger.is_terminal(record.status):
        return _outcome(
            envelope, 200,
            received=True, status="already_processed", original_status=record.status
        )
    return _outcome(
        envelope, 500,
        received=False, status="failed", error="Event is already being processed", recoverable=True
    )


def replay_event(event_id: str, db: Session) -> WebhookOutcome:
    """Re-run a stored event from its ledger payload, skipping signature checks.

    Used for manual intervention after a non-recoverable failure has been fixed,
    or after an UNMAPPED event's subscription has been linked to an organization.
    """
    record: Optional[WebhookEvent] = event_ledger.lookup_event(event_id, db)
    if record is None:
        return WebhookOutcome(404, {"error": f"Webhook event {event_id} not found"})

    try:
        envelope = StripeEventEnvelope.model_validate(record.payload)
    except ValidationError:
        raise MalformedPayload(f"Stored payload for {event_id} is not a Stripe event envelope")

    logger.info(f"Replaying webhook event {event_id} (status: {record.status})")
    if record.status == event_ledger.UNMAPPED:
        event_ledger.reset_unmapped(record, db)
    return handle_event(envelope, record.payload, db)
