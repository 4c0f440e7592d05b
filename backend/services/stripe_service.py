"""Stripe Service - Checkout, subscription status and webhook handling.

This service handles:
- Resolving plan prices per tenant type (restaurant, voice, real_estate)
- Creating the setup-fee checkout session (subscription is created by the
  webhook once the fee is paid, with a 30-day trial)
- Cancelling at period end
- Mirroring Stripe subscription state into the `subscriptions` collection

Key Principles:
- Price ids come from STRIPE_PRICE_<TYPE>_<PLAN>_<MONTHLY|SETUP> env vars
- Metadata carries tenantId/tenantType/plan for webhook tracing
"""
import stripe
import os
import json
import logging
from typing import Optional, Dict, Any, Tuple
from datetime import datetime, timezone

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from database import database
from models import SubscriptionStatus, TenantType
from utils.firestore_docs import snapshot_to_dict

logger = logging.getLogger(__name__)

# Initialize Stripe (prefer STRIPE_SECRET_KEY; fallback STRIPE_API_KEY)
stripe.api_key = (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()

TRIAL_PERIOD_DAYS = 30

# Plans offered per tenant type.
PLAN_CATALOG = {
    TenantType.RESTAURANT.value: ("basic", "enterprise"),
    TenantType.VOICE.value: ("basic", "professional", "enterprise"),
    TenantType.REAL_ESTATE.value: ("basic", "professional"),
}


class BillingError(ValueError):
    """Billing request cannot be served (bad plan, missing subscription, ...)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _get_webhook_secret() -> str:
    return (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()


def get_plan_prices(tenant_type: str, plan: str) -> Optional[Dict[str, str]]:
    """`{"monthly": price_id, "setup": price_id}` or None if not configured."""
    if plan not in PLAN_CATALOG.get(tenant_type, ()):
        return None
    prefix = f"STRIPE_PRICE_{tenant_type.upper()}_{plan.upper()}"
    monthly = (os.getenv(f"{prefix}_MONTHLY") or "").strip()
    setup = (os.getenv(f"{prefix}_SETUP") or "").strip()
    if not monthly or not setup:
        return None
    return {"monthly": monthly, "setup": setup}


def _timestamp(epoch: Optional[int]) -> Optional[datetime]:
    if not epoch:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class StripeService:
    """Stripe billing operations service."""

    # =========================================================================
    # Subscription status
    # =========================================================================

    def _find_subscription(self, **filters):
        db = database.get_db()
        query = db.collection("subscriptions")
        for field, value in filters.items():
            query = query.where(filter=FieldFilter(field, "==", value))
        docs = list(query.limit(1).stream())
        return docs[0] if docs else None

    def get_subscription(self, tenant_id: str, tenant_type: str) -> Dict[str, Any]:
        db = database.get_db()
        query = (
            db.collection("subscriptions")
            .where(filter=FieldFilter("tenantId", "==", tenant_id))
            .where(filter=FieldFilter("tenantType", "==", tenant_type))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        docs = list(query.stream())
        if not docs:
            return {
                "status": SubscriptionStatus.TRIAL.value,
                "plan": None,
                "trialEndsAt": None,
                "currentPeriodEnd": None,
            }

        subscription = snapshot_to_dict(docs[0])
        return {
            "id": subscription["id"],
            "status": subscription.get("status"),
            "plan": subscription.get("plan"),
            "trialEndsAt": subscription.get("trialEndsAt"),
            "currentPeriodEnd": subscription.get("currentPeriodEnd"),
            "monthlyAmount": subscription.get("monthlyAmount"),
            "setupFeePaid": subscription.get("setupFeePaid"),
            "stripeSubscriptionId": subscription.get("stripeSubscriptionId"),
            "cancelAtPeriodEnd": subscription.get("cancelAtPeriodEnd", False),
        }

    # =========================================================================
    # Checkout
    # =========================================================================

    def _get_or_create_customer(self, uid: str, email: Optional[str], tenant_id: str, tenant_type: str) -> str:
        db = database.get_db()
        user_ref = db.collection("users").document(uid)
        user_doc = user_ref.get()
        if user_doc.exists:
            customer_id = (user_doc.to_dict() or {}).get("stripeCustomerId")
            if customer_id:
                return customer_id

        customer = stripe.Customer.create(
            email=email or "",
            metadata={"tenantId": tenant_id, "tenantType": tenant_type, "userId": uid},
        )
        user_ref.set({"stripeCustomerId": customer.id}, merge=True)
        logger.info("Created Stripe customer %s for user %s", customer.id, uid)
        return customer.id

    def create_checkout_session(
        self,
        uid: str,
        email: Optional[str],
        tenant_id: str,
        tenant_type: str,
        plan: str,
        origin_url: str,
    ) -> Dict[str, Any]:
        """
        Create a payment-mode checkout for the one-time setup fee.

        The card is saved for off-session use; the webhook then creates the
        monthly subscription with a trial.
        """
        if not (stripe.api_key or "").strip():
            raise BillingError("STRIPE_SECRET_KEY or STRIPE_API_KEY is not set", status_code=500)

        prices = get_plan_prices(tenant_type, plan)
        if not prices:
            raise BillingError("Invalid plan for tenant type")

        base = (origin_url or "").strip().rstrip("/")
        metadata = {
            "tenantId": tenant_id,
            "tenantType": tenant_type,
            "plan": plan,
            "monthlyPriceId": prices["monthly"],
        }

        try:
            customer_id = self._get_or_create_customer(uid, email, tenant_id, tenant_type)
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                mode="payment",
                line_items=[{"price": prices["setup"], "quantity": 1}],
                payment_intent_data={
                    "setup_future_usage": "off_session",
                    "metadata": {**metadata, "setupFee": "true"},
                },
                success_url=f"{base}/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{base}/billing?canceled=true",
                metadata={**metadata, "createSubscription": "true"},
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout error tenant=%s: %s", tenant_id, e)
            raise BillingError(f"Failed to create checkout session: {e}", status_code=502)

        logger.info("Checkout session created tenant=%s session=%s", tenant_id, session.id)
        return {"url": session.url, "session_id": session.id}

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_subscription(self, tenant_id: str, tenant_type: str) -> Dict[str, Any]:
        doc = self._find_subscription(
            tenantId=tenant_id, tenantType=tenant_type, status=SubscriptionStatus.ACTIVE.value
        )
        if doc is None:
            raise BillingError("No active subscription found", status_code=404)

        subscription = doc.to_dict() or {}
        try:
            stripe.Subscription.modify(subscription["stripeSubscriptionId"], cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error("Stripe cancel error tenant=%s: %s", tenant_id, e)
            raise BillingError(f"Failed to cancel subscription: {e}", status_code=502)

        doc.reference.update({
            "cancelAtPeriodEnd": True,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Subscription %s set to cancel at period end", doc.id)
        return {"success": True, "message": "Subscription will cancel at period end"}

    # =========================================================================
    # Webhooks
    # =========================================================================

    def construct_event(self, payload: bytes, signature: str):
        webhook_secret = _get_webhook_secret()
        if not signature or not webhook_secret:
            raise BillingError("Webhook signature or secret missing")
        try:
            stripe.Webhook.construct_event(payload, signature, webhook_secret)
            # Handlers work on the plain JSON payload once the signature checks out.
            return json.loads(payload)
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s", e)
            raise BillingError(f"Webhook Error: {e}")
        except ValueError as e:
            logger.error("Webhook parse error: %s", e)
            raise BillingError(f"Webhook Error: {e}")

    def handle_event(self, event) -> Tuple[str, bool]:
        """Dispatch a verified event. Returns (event_type, handled)."""
        event_type = event["type"]
        obj = event["data"]["object"]
        logger.info("WEBHOOK_RECEIVED event_id=%s event_type=%s", event.get("id"), event_type)

        if event_type == "checkout.session.completed":
            self._handle_checkout_completed(obj)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            self._handle_subscription_update(obj)
        elif event_type == "customer.subscription.deleted":
            self._set_status(obj["id"], SubscriptionStatus.CANCELED.value, "canceledAt")
        elif event_type == "invoice.payment_succeeded":
            self._set_status(self._invoice_subscription_id(obj), SubscriptionStatus.ACTIVE.value, "lastPaymentDate")
        elif event_type == "invoice.payment_failed":
            self._set_status(self._invoice_subscription_id(obj), SubscriptionStatus.PAST_DUE.value, "lastFailedPaymentDate")
        else:
            logger.info("Unhandled event type: %s", event_type)
            return event_type, False
        return event_type, True

    def _handle_checkout_completed(self, session):
        metadata = session.get("metadata") or {}
        tenant_id = metadata.get("tenantId")
        tenant_type = metadata.get("tenantType")
        plan = metadata.get("plan")
        if not (tenant_id and tenant_type and plan):
            logger.error("Missing metadata in checkout session %s", session.get("id"))
            return

        monthly_price_id = metadata.get("monthlyPriceId")
        if metadata.get("createSubscription") != "true" or not monthly_price_id:
            logger.info("Checkout completed for %s tenant %s, plan %s", tenant_type, tenant_id, plan)
            return

        try:
            subscription = stripe.Subscription.create(
                customer=session.get("customer"),
                items=[{"price": monthly_price_id}],
                trial_period_days=TRIAL_PERIOD_DAYS,
                metadata={"tenantId": tenant_id, "tenantType": tenant_type, "plan": plan},
            )
            logger.info("Subscription %s created with %s-day trial", subscription.id, TRIAL_PERIOD_DAYS)
        except stripe.StripeError as e:
            # The setup fee is already charged; the subscription can be created manually.
            logger.error("Error creating subscription after setup payment tenant=%s: %s", tenant_id, e)

    def _handle_subscription_update(self, subscription):
        metadata = subscription.get("metadata") or {}
        tenant_id = metadata.get("tenantId")
        tenant_type = metadata.get("tenantType")
        if not (tenant_id and tenant_type):
            logger.error("Missing metadata in subscription %s", subscription.get("id"))
            return

        data = {
            "tenantId": tenant_id,
            "tenantType": tenant_type,
            "plan": metadata.get("plan") or "basic",
            "status": subscription.get("status"),
            "stripeCustomerId": subscription.get("customer"),
            "stripeSubscriptionId": subscription["id"],
            "trialEndsAt": _timestamp(subscription.get("trial_end")),
            "currentPeriodEnd": _timestamp(subscription.get("current_period_end")) or datetime.now(timezone.utc),
            "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }

        existing = self._find_subscription(stripeSubscriptionId=subscription["id"])
        if existing is None:
            database.get_db().collection("subscriptions").add({**data, "createdAt": firestore.SERVER_TIMESTAMP})
            logger.info("Created subscription document for %s", subscription["id"])
        else:
            existing.reference.update(data)
            logger.info("Updated subscription document %s", existing.id)

    @staticmethod
    def _invoice_subscription_id(invoice) -> Optional[str]:
        sub = invoice.get("subscription")
        if isinstance(sub, dict):
            return sub.get("id")
        return sub

    def _set_status(self, stripe_subscription_id: Optional[str], new_status: str, stamp_field: str):
        if not stripe_subscription_id:
            return
        existing = self._find_subscription(stripeSubscriptionId=stripe_subscription_id)
        if existing is None:
            logger.warning("No subscription document for %s", stripe_subscription_id)
            return
        existing.reference.update({
            "status": new_status,
            stamp_field: firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Subscription %s marked %s", stripe_subscription_id, new_status)


stripe_service = StripeService()
