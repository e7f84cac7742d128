# backend/app/api/v1/stripe_webhook.py
from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.services import get_notification_dispatcher
from app.api.errors import http_error
from app.core.config import settings
from app.core.errors import ConfigurationError
from app.db.session import get_db
from app.services.notifications import NotificationDispatcher
from app.services.payment_events import handle_payment_intent_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> dict:
    """
    Stripe calls this for PaymentIntent outcomes it settles after the charge
    request returned. The signature is verified against STRIPE_WEBHOOK_SECRET
    before anything is read from the payload.
    """
    secret = (settings.STRIPE_WEBHOOK_SECRET or "").strip()
    if not secret:
        raise http_error(ConfigurationError("Stripe webhook secret is not configured. Add STRIPE_WEBHOOK_SECRET."))

    payload = (await request.body()).decode("utf-8")
    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature or "", secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_WEBHOOK", "message": "Invalid payload or signature"},
        )

    event_type = event["type"]
    result = await handle_payment_intent_event(db, event_type, event["data"]["object"], dispatcher)
    logger.info("Stripe event %s (%s): %s", event.get("id"), event_type, result)
    return {"received": True, "type": event_type, "result": result}
