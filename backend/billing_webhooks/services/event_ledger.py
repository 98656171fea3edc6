"""Webhook event ledger and its status state machine

The ledger row keyed by the provider's event id is the single source of truth
for idempotency. Status changes are committed on their own, outside the
billing transaction, so a crash mid-mutation leaves PENDING or FAILED behind.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_webhooks.core.exceptions import DuplicateEvent, InvalidTransition, RecoverableProcessingError
from billing_webhooks.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = logging.getLogger(__name__)

PENDING = WebhookEventStatus.PENDING.value
PROCESSED = WebhookEventStatus.PROCESSED.value
IGNORED = WebhookEventStatus.IGNORED.value
FAILED = WebhookEventStatus.FAILED.value
UNMAPPED = WebhookEventStatus.UNMAPPED.value

TERMINAL_STATUSES = frozenset({PROCESSED, IGNORED, UNMAPPED})

ALLOWED_TRANSITIONS = {
    PENDING: frozenset({PENDING, PROCESSED, IGNORED, FAILED, UNMAPPED}),
    FAILED: frozenset({PENDING}),
    PROCESSED: frozenset(),
    IGNORED: frozenset(),
    # Replay only, once the subscription has been mapped; redelivery still short-circuits
    UNMAPPED: frozenset({PENDING}),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def lookup_event(event_id: str, db: Session) -> Optional[WebhookEvent]:
    return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()


def create_event(
    event_id: str,
    event_type: str,
    payload: dict,
    db: Session,
    provider_created_at: Optional[datetime] = None
) -> WebhookEvent:
    """Record the first sighting of an event as PENDING.

    Raises:
        DuplicateEvent: Another request created the row first (unique event_id)
    """
    record = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        status=PENDING,
        attempts=1,
        provider_created_at=provider_created_at
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEvent(event_id)
    db.refresh(record)
    return record


def get_or_create_event(
    event_id: str,
    event_type: str,
    payload: dict,
    db: Session,
    provider_created_at: Optional[datetime] = None
) -> Tuple[WebhookEvent, bool]:
    """Return (record, created). Losing a create race falls back to the winner's row."""
    record = lookup_event(event_id, db)
    if record:
        return record, False

    try:
        return create_event(event_id, event_type, payload, db, provider_created_at), True
    except DuplicateEvent:
        logger.info(f"Webhook event {event_id} created concurrently, using existing ledger row")
        record = lookup_event(event_id, db)
        if record is None:
            raise RecoverableProcessingError(f"Ledger row for {event_id} conflicted but could not be read back")
        return record, False


def _transition(record: WebhookEvent, target: str, db: Session, error: Optional[str] = None) -> WebhookEvent:
    current = record.status
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(record.event_id, current, target)

    record.status = target
    record.last_error = error
    record.processed_at = None if target == PENDING else datetime.now(timezone.utc)
    db.commit()
    db.refresh(record)
    logger.debug(f"Webhook event {record.event_id}: {current} -> {target}")
    return record


def reset_for_retry(record: WebhookEvent, db: Session) -> WebhookEvent:
    """FAILED -> PENDING before reprocessing a redelivered event"""
    if record.status != FAILED:
        raise InvalidTransition(record.event_id, record.status, PENDING)
    record.attempts = (record.attempts or 0) + 1
    return _transition(record, PENDING, db)


def reset_unmapped(record: WebhookEvent, db: Session) -> WebhookEvent:
    """UNMAPPED -> PENDING when an operator replays an event after mapping its subscription"""
    if record.status != UNMAPPED:
        raise InvalidTransition(record.event_id, record.status, PENDING)
    record.attempts = (record.attempts or 0) + 1
    return _transition(record, PENDING, db)


def mark_processed(record: WebhookEvent, db: Session) -> WebhookEvent:
    return _transition(record, PROCESSED, db)


def mark_ignored(record: WebhookEvent, db: Session) -> WebhookEvent:
    return _transition(record, IGNORED, db)


def mark_unmapped(record: WebhookEvent, db: Session, detail: Optional[str] = None) -> WebhookEvent:
    return _transition(record, UNMAPPED, db, error=detail)


def mark_failed(record: WebhookEvent, error_detail: str, db: Session) -> WebhookEvent:
    return _transition(record, FAILED, db, error=error_detail)
