"""Billing Routes - Subscription and payment management.

Endpoints:
- GET /billing/subscription - Current subscription (trial when none exists)
- POST /billing/create-checkout-session - Setup-fee checkout for a plan
- POST /billing/cancel-subscription - Cancel at period end
- POST /billing/webhook - Stripe webhook (public, signature verified)
"""
from fastapi import APIRouter, HTTPException, Request, Header, status
from fastapi.concurrency import run_in_threadpool
from middleware import require_auth, effective_tenant_id
from models import CheckoutRequest
from services.stripe_service import stripe_service, BillingError
import logging
import os

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])


def _tenant_or_400(user: dict) -> tuple:
    tenant_id = effective_tenant_id(user)
    tenant_type = user.get("type")
    if not tenant_id or not tenant_type:
        logger.error("Missing tenant information uid=%s", user.get("uid"))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant information"
        )
    return tenant_id, tenant_type


@router.get("/subscription")
def get_subscription(request: Request):
    user = require_auth(request)
    tenant_id, tenant_type = _tenant_or_400(user)
    try:
        return stripe_service.get_subscription(tenant_id, tenant_type)
    except Exception as e:
        logger.error(f"Error getting subscription for {tenant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get subscription"
        )


@router.post("/create-checkout-session")
def create_checkout_session(request: Request, body: CheckoutRequest):
    user = require_auth(request)
    tenant_id, tenant_type = _tenant_or_400(user)

    origin = request.headers.get("origin") or os.getenv("FRONTEND_URL", "https://merxus.com")
    try:
        return stripe_service.create_checkout_session(
            uid=user["uid"],
            email=user.get("email"),
            tenant_id=tenant_id,
            tenant_type=tenant_type,
            plan=body.plan,
            origin_url=origin,
        )
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/cancel-subscription")
def cancel_subscription(request: Request):
    user = require_auth(request)
    tenant_id, tenant_type = _tenant_or_400(user)
    try:
        return stripe_service.cancel_subscription(tenant_id, tenant_type)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature")
):
    payload = await request.body()
    try:
        event = stripe_service.construct_event(payload, stripe_signature or "")
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        event_type, handled = await run_in_threadpool(stripe_service.handle_event, event)
    except Exception as e:
        logger.exception(f"Stripe webhook error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed"
        )
    return {"received": True, "type": event_type, "handled": handled}
