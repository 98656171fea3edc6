"""Pydantic schemas for Stripe webhook deliveries"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class StripeEventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class StripeEventEnvelope(BaseModel):
    """Stripe event envelope: {id, type, created, data: {object}}"""
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: Optional[int] = None
    data: StripeEventData = Field(default_factory=StripeEventData)


class WebhookResponse(BaseModel):
    received: bool
    status: str  # 'already_processed', 'ignored', 'processed', 'unmapped', 'failed'
    original_status: Optional[str] = None
    error: Optional[str] = None
    recoverable: Optional[bool] = None
