"""
Tests for billing: subscription status, setup-fee checkout, cancellation and
Stripe webhook handling. Stripe calls are mocked; Firestore is in-memory.
"""
import json
import os
import pytest
import stripe
from unittest.mock import MagicMock, patch

from services.stripe_service import (
    TRIAL_PERIOD_DAYS,
    StripeService,
    get_plan_prices,
)

PRICE_ENV = {
    "STRIPE_PRICE_RESTAURANT_BASIC_MONTHLY": "price_monthly_basic",
    "STRIPE_PRICE_RESTAURANT_BASIC_SETUP": "price_setup_basic",
    "STRIPE_WEBHOOK_SECRET": "whsec_test",
}


@pytest.fixture(autouse=True)
def stripe_env(fake_db):
    with patch.dict(os.environ, PRICE_ENV, clear=False), \
         patch.object(stripe, "api_key", "sk_test_123"):
        yield


def subscriptions(fake_db):
    return [d for p, d in fake_db.docs.items() if p[0] == "subscriptions"]


class TestPlanPrices:

    def test_configured_plan(self):
        assert get_plan_prices("restaurant", "basic") == {
            "monthly": "price_monthly_basic",
            "setup": "price_setup_basic",
        }

    def test_plan_not_offered_for_tenant_type(self):
        assert get_plan_prices("restaurant", "professional") is None
        assert get_plan_prices("unknown", "basic") is None

    def test_unconfigured_prices(self):
        assert get_plan_prices("voice", "enterprise") is None


class TestSubscriptionRoutes:

    def test_trial_when_no_subscription(self, client, restaurant_headers):
        response = client.get("/billing/subscription", headers=restaurant_headers)
        assert response.status_code == 200
        assert response.json() == {
            "status": "trial",
            "plan": None,
            "trialEndsAt": None,
            "currentPeriodEnd": None,
        }

    def test_latest_subscription(self, client, fake_db, restaurant_headers):
        fake_db.seed("subscriptions/s1", {
            "tenantId": "rest-1", "tenantType": "restaurant", "status": "canceled", "plan": "basic", "createdAt": 1,
        })
        fake_db.seed("subscriptions/s2", {
            "tenantId": "rest-1", "tenantType": "restaurant", "status": "active", "plan": "enterprise", "createdAt": 2,
        })
        body = client.get("/billing/subscription", headers=restaurant_headers).json()
        assert body["id"] == "s2"
        assert body["status"] == "active"
        assert body["cancelAtPeriodEnd"] is False

    def test_missing_tenant_information(self, client, login):
        response = client.get("/billing/subscription", headers=login(role="owner"))
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing tenant information"

    def test_tenant_falls_back_to_vertical_claim(self, client, login):
        headers = login(role="owner", type="voice", officeId="office-1")
        response = client.get("/billing/subscription", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "trial"


class TestCheckout:

    def test_creates_setup_fee_session(self, client, fake_db, restaurant_headers):
        with patch("services.stripe_service.stripe.Customer.create", return_value=MagicMock(id="cus_1")) as create_customer, \
             patch("services.stripe_service.stripe.checkout.Session.create",
                   return_value=MagicMock(id="cs_1", url="https://checkout.stripe.test/cs_1")) as create_session:
            response = client.post(
                "/billing/create-checkout-session",
                json={"plan": "basic"},
                headers={**restaurant_headers, "Origin": "https://portal.example.com"},
            )

        assert response.status_code == 200
        assert response.json() == {"url": "https://checkout.stripe.test/cs_1", "session_id": "cs_1"}
        create_customer.assert_called_once()

        kwargs = create_session.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["customer"] == "cus_1"
        assert kwargs["line_items"] == [{"price": "price_setup_basic", "quantity": 1}]
        assert kwargs["metadata"]["monthlyPriceId"] == "price_monthly_basic"
        assert kwargs["metadata"]["createSubscription"] == "true"
        assert kwargs["success_url"].startswith("https://portal.example.com/billing?success=true")
        assert fake_db.docs[("users", "user-1")]["stripeCustomerId"] == "cus_1"

    def test_reuses_existing_customer(self, client, fake_db, restaurant_headers):
        fake_db.seed("users/user-1", {"stripeCustomerId": "cus_existing"})
        with patch("services.stripe_service.stripe.Customer.create") as create_customer, \
             patch("services.stripe_service.stripe.checkout.Session.create",
                   return_value=MagicMock(id="cs_2", url="https://checkout.stripe.test/cs_2")) as create_session:
            response = client.post("/billing/create-checkout-session", json={"plan": "basic"}, headers=restaurant_headers)

        assert response.status_code == 200
        create_customer.assert_not_called()
        assert create_session.call_args.kwargs["customer"] == "cus_existing"

    def test_invalid_plan(self, client, restaurant_headers):
        response = client.post("/billing/create-checkout-session", json={"plan": "professional"}, headers=restaurant_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid plan for tenant type"

    def test_missing_stripe_key(self, client, restaurant_headers):
        with patch.object(stripe, "api_key", ""):
            response = client.post("/billing/create-checkout-session", json={"plan": "basic"}, headers=restaurant_headers)
        assert response.status_code == 500


class TestCancel:

    def test_no_active_subscription(self, client, restaurant_headers):
        response = client.post("/billing/cancel-subscription", headers=restaurant_headers)
        assert response.status_code == 404

    def test_cancel_at_period_end(self, client, fake_db, restaurant_headers):
        fake_db.seed("subscriptions/s1", {
            "tenantId": "rest-1", "tenantType": "restaurant", "status": "active", "stripeSubscriptionId": "sub_1",
        })
        with patch("services.stripe_service.stripe.Subscription.modify") as modify:
            response = client.post("/billing/cancel-subscription", headers=restaurant_headers)

        assert response.status_code == 200
        modify.assert_called_once_with("sub_1", cancel_at_period_end=True)
        assert fake_db.docs[("subscriptions", "s1")]["cancelAtPeriodEnd"] is True


class TestWebhook:

    def test_missing_signature(self, client):
        response = client.post("/billing/webhook", content=b"{}")
        assert response.status_code == 400

    def test_bad_signature(self, client):
        error = stripe.SignatureVerificationError("bad", "sig")
        with patch("services.stripe_service.stripe.Webhook.construct_event", side_effect=error):
            response = client.post("/billing/webhook", content=b"{}", headers={"Stripe-Signature": "sig"})
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Webhook Error")

    def test_subscription_created_is_mirrored(self, client, fake_db):
        event = {
            "id": "evt_1",
            "type": "customer.subscription.created",
            "data": {"object": {
                "id": "sub_1",
                "customer": "cus_1",
                "status": "trialing",
                "trial_end": 1767225600,
                "current_period_end": 1767225600,
                "metadata": {"tenantId": "rest-1", "tenantType": "restaurant", "plan": "basic"},
            }},
        }
        with patch("services.stripe_service.stripe.Webhook.construct_event"):
            response = client.post(
                "/billing/webhook", content=json.dumps(event).encode(), headers={"Stripe-Signature": "sig"}
            )

        assert response.status_code == 200
        assert response.json() == {"received": True, "type": "customer.subscription.created", "handled": True}
        [doc] = subscriptions(fake_db)
        assert doc["stripeSubscriptionId"] == "sub_1"
        assert doc["tenantId"] == "rest-1"
        assert doc["trialEndsAt"].year == 2026

    def test_unhandled_event(self, client):
        event = {"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}}
        with patch("services.stripe_service.stripe.Webhook.construct_event"):
            response = client.post(
                "/billing/webhook", content=json.dumps(event).encode(), headers={"Stripe-Signature": "sig"}
            )
        assert response.json()["handled"] is False


class TestHandleEvent:

    def test_subscription_update_then_payment_failed(self, fake_db):
        service = StripeService()
        fake_db.seed("subscriptions/s1", {
            "tenantId": "rest-1", "tenantType": "restaurant", "status": "active", "stripeSubscriptionId": "sub_1",
        })

        service.handle_event({
            "type": "invoice.payment_failed",
            "data": {"object": {"subscription": "sub_1"}},
        })
        assert fake_db.docs[("subscriptions", "s1")]["status"] == "past_due"

        service.handle_event({
            "type": "invoice.payment_succeeded",
            "data": {"object": {"subscription": {"id": "sub_1"}}},
        })
        assert fake_db.docs[("subscriptions", "s1")]["status"] == "active"

        service.handle_event({"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}})
        doc = fake_db.docs[("subscriptions", "s1")]
        assert doc["status"] == "canceled"
        assert "canceledAt" in doc

    def test_existing_subscription_is_updated_not_duplicated(self, fake_db):
        fake_db.seed("subscriptions/s1", {"stripeSubscriptionId": "sub_1", "status": "trialing"})
        StripeService().handle_event({
            "type": "customer.subscription.updated",
            "data": {"object": {
                "id": "sub_1",
                "status": "active",
                "cancel_at_period_end": True,
                "metadata": {"tenantId": "rest-1", "tenantType": "restaurant"},
            }},
        })
        [doc] = subscriptions(fake_db)
        assert doc["status"] == "active"
        assert doc["plan"] == "basic"
        assert doc["cancelAtPeriodEnd"] is True

    def test_checkout_completed_starts_trial_subscription(self, fake_db):
        session = {
            "id": "cs_1",
            "customer": "cus_1",
            "metadata": {
                "tenantId": "rest-1",
                "tenantType": "restaurant",
                "plan": "basic",
                "monthlyPriceId": "price_monthly_basic",
                "createSubscription": "true",
            },
        }
        with patch("services.stripe_service.stripe.Subscription.create", return_value=MagicMock(id="sub_9")) as create:
            event_type, handled = StripeService().handle_event(
                {"type": "checkout.session.completed", "data": {"object": session}}
            )

        assert (event_type, handled) == ("checkout.session.completed", True)
        kwargs = create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["items"] == [{"price": "price_monthly_basic"}]
        assert kwargs["trial_period_days"] == TRIAL_PERIOD_DAYS == 30

    def test_checkout_without_metadata_is_ignored(self, fake_db):
        with patch("services.stripe_service.stripe.Subscription.create") as create:
            StripeService().handle_event({"type": "checkout.session.completed", "data": {"object": {"id": "cs_2"}}})
        create.assert_not_called()
