"""Stripe webhook endpoint.

Checkout itself happens on Stripe's hosted pages; this service only
listens for subscription lifecycle events and keeps each user's
subscription status and account deletion deadline current.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request

from api.dependencies import RetentionDep, SettingsDep, StoreDep
from api.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/webhooks")
async def stripe_webhook(
    request: Request,
    settings: SettingsDep,
    store: StoreDep,
    retention: RetentionDep,
) -> dict[str, str]:
    """Handle incoming Stripe webhook events.

    Validates the webhook signature using the configured webhook secret and
    dispatches the event to the billing service.  This endpoint bypasses
    gateway identity (validated via Stripe signature instead).
    """
    if not settings.billing_enabled:
        return {"status": "billing_disabled"}

    body = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    service = BillingService(store, retention, settings)
    try:
        service.verify_signature(body, sig_header)
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except Exception as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Signature verification failed")

    result = await service.handle_webhook_event(event)
    logger.info("Stripe event %s (%s): %s", event.get("id"), event.get("type"), result["status"])
    return result
