#!/usr/bin/env python3
"""
Replay stored Stripe webhook events from the ledger.

Usage:
    # List events that need attention
    python replay_webhook_event.py --list-failed

    # Re-run a single event from its stored payload
    python replay_webhook_event.py --event-id evt_1ABC
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billing_webhooks.core.logging import setup_logging
from billing_webhooks.db.session import session_scope
from billing_webhooks.models.webhook_event import WebhookEvent, WebhookEventStatus
from billing_webhooks.services.price_registry import StripeRegistry
from billing_webhooks.services.webhook_service import replay_event


def list_failed(limit: int):
    """Print FAILED and UNMAPPED ledger rows, newest first"""
    with session_scope() as db:
        events = db.query(WebhookEvent).filter(
            WebhookEvent.status.in_([WebhookEventStatus.FAILED.value, WebhookEventStatus.UNMAPPED.value])
        ).order_by(WebhookEvent.received_at.desc()).limit(limit).all()

        if not events:
            print("✅ No failed or unmapped webhook events")
            return True

        for event in events:
            print(f"{event.event_id}  {event.event_type:<40} {event.status:<10} attempts={event.attempts}")
            if event.last_error:
                print(f"    {event.last_error}")
        return True


def replay(event_id: str):
    """Re-run one event and report the outcome"""
    with session_scope() as db:
        outcome = replay_event(event_id, db)
        if outcome.status_code == 404:
            print(f"❌ Webhook event not found: {event_id}")
            return False

        status = outcome.body.get("status")
        if status in ("processed", "ignored"):
            print(f"✅ {event_id}: {status}")
            return True

        print(f"⚠️  {event_id}: {status} ({outcome.body.get('error') or outcome.body.get('original_status')})")
        return False


def main():
    parser = argparse.ArgumentParser(description='Replay stored Stripe webhook events.')
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--event-id', help='Stripe event id to replay')
    group.add_argument('--list-failed', action='store_true', help='List FAILED and UNMAPPED events')
    parser.add_argument('--limit', type=int, default=50, help='Max events to list')
    args = parser.parse_args()

    setup_logging()

    if args.list_failed:
        ok = list_failed(args.limit)
    else:
        StripeRegistry.load_from_settings()
        ok = replay(args.event_id)

    sys.exit(0 if ok else 1)


if __name__ == '__main__':
    main()
