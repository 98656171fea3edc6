"""Stripe webhook endpoint"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from billing_webhooks.db.session import get_db
from billing_webhooks.core.exceptions import InvalidSignature, MalformedPayload, WebhookNotConfigured
from billing_webhooks.services.webhook_service import process_stripe_webhook

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/api/billing/webhook")
@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    """
    # Signature is computed over the exact bytes Stripe sent
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        outcome = process_stripe_webhook(payload, sig_header, db)
    except WebhookNotConfigured:
        return JSONResponse(status_code=500, content={"error": "Webhook not configured"})
    except InvalidSignature as e:
        logger.warning(f"Invalid webhook signature: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})
    except MalformedPayload as e:
        logger.error(f"Invalid webhook payload: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})

    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
