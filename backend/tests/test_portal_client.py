"""Tests for the portal API client (token attachment, error mapping, login redirect)."""
import os
import pytest
import requests
from unittest.mock import MagicMock, patch

from utils.portal_client import (
    AuthenticationRequired,
    PortalAPIError,
    PortalClient,
    default_base_url,
)


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.reason = "Error" if status_code >= 400 else "OK"
    if payload is None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError("no json")
    else:
        response.content = b"{...}"
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


class TestBaseUrl:

    def test_explicit_base_url(self):
        with patch.dict(os.environ, {"PORTAL_API_BASE_URL": "https://api.example.com/"}, clear=False):
            assert default_base_url() == "https://api.example.com"

    def test_development_uses_emulator(self):
        env = {"PORTAL_API_BASE_URL": "", "ENVIRONMENT": "development", "FIREBASE_PROJECT_ID": "demo"}
        with patch.dict(os.environ, env, clear=False):
            assert default_base_url() == "http://localhost:5001/demo/us-central1/api"

    def test_production_uses_functions_url(self):
        env = {"PORTAL_API_BASE_URL": "", "ENVIRONMENT": "production", "FIREBASE_PROJECT_ID": "demo"}
        with patch.dict(os.environ, env, clear=False):
            assert default_base_url() == "https://us-central1-demo.cloudfunctions.net/api"


class TestRequests:

    def test_bearer_token_attached(self, session):
        session.request.return_value = make_response(payload=[{"id": "o1"}])
        client = PortalClient("https://api.test", token_provider=lambda: "tok", session=session)

        assert client.list_orders(limit=5, order_type="pickup") == [{"id": "o1"}]
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("GET", "https://api.test/orders")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["params"] == {"limit": 5, "orderType": "pickup"}

    def test_no_token_no_header(self, session):
        session.request.return_value = make_response(payload={"status": "ok"})
        client = PortalClient("https://api.test", token_provider=lambda: None, session=session)
        client.get("/health")
        assert "Authorization" not in session.request.call_args.kwargs["headers"]

    def test_token_provider_failure_still_sends(self, session):
        session.request.return_value = make_response(payload=[])

        def broken():
            raise RuntimeError("token refresh failed")

        client = PortalClient("https://api.test", token_provider=broken, session=session)
        assert client.list_menu() == []
        assert "Authorization" not in session.request.call_args.kwargs["headers"]

    def test_empty_body_is_none(self, session):
        session.request.return_value = make_response(status_code=204)
        client = PortalClient("https://api.test", session=session)
        assert client.delete("/menu/a") is None

    def test_post_sends_json(self, session):
        session.request.return_value = make_response(payload={"id": "m1"})
        client = PortalClient("https://api.test", session=session)
        client.create_menu_item({"name": "Burger", "price": 9.99, "category": "Entrees"})
        assert session.request.call_args.kwargs["json"]["name"] == "Burger"

    @pytest.mark.parametrize("search,params", [
        (None, {"limit": 100}),
        ("", {"limit": 100}),
        ("555", {"limit": 100, "search": "555"}),
    ])
    def test_list_customers_search_param(self, session, search, params):
        session.request.return_value = make_response(payload=[{"id": "c1"}])
        client = PortalClient("https://api.test", session=session)
        assert client.list_customers(search=search) == [{"id": "c1"}]
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://api.test/customers")
        assert session.request.call_args.kwargs["params"] == params

    def test_get_subscription(self, session):
        payload = {"status": "trialing", "planId": "starter"}
        session.request.return_value = make_response(payload=payload)
        client = PortalClient("https://api.test", token_provider=lambda: "tok", session=session)
        assert client.get_subscription() == payload
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://api.test/billing/subscription")


class TestErrors:

    def test_error_detail_becomes_message(self, session):
        session.request.return_value = make_response(status_code=404, payload={"detail": "Order not found"})
        client = PortalClient("https://api.test", session=session)
        with pytest.raises(PortalAPIError) as exc:
            client.update_order("nope", {"status": "ready"})
        assert str(exc.value) == "Order not found"
        assert exc.value.status_code == 404

    def test_nested_detail_message(self, session):
        payload = {"detail": {"message": "No tenant ID found", "currentClaims": {}}}
        session.request.return_value = make_response(status_code=400, payload=payload)
        client = PortalClient("https://api.test", session=session)
        with pytest.raises(PortalAPIError) as exc:
            client.refresh_claims()
        assert str(exc.value) == "No tenant ID found"
        assert exc.value.payload == payload

    def test_401_requires_login(self, session):
        session.request.return_value = make_response(status_code=401, payload={"detail": "Token expired"})
        client = PortalClient("https://api.test", current_path="/orders?tab=open", session=session)
        with pytest.raises(AuthenticationRequired) as exc:
            client.list_orders()
        assert exc.value.login_url == "/login?redirect=%2Forders%3Ftab%3Dopen"

    def test_401_on_public_path_is_plain_error(self, session):
        session.request.return_value = make_response(status_code=401, text="Unauthorized")
        client = PortalClient("https://api.test", session=session)
        with pytest.raises(PortalAPIError) as exc:
            client.get("/onboarding/status")
        assert not isinstance(exc.value, AuthenticationRequired)
        assert str(exc.value) == "Unauthorized"

    def test_401_on_login_page_is_plain_error(self, session):
        session.request.return_value = make_response(status_code=401, payload={"detail": "Invalid authentication token"})
        client = PortalClient("https://api.test", current_path="/login", session=session)
        with pytest.raises(PortalAPIError) as exc:
            client.get_claims()
        assert not isinstance(exc.value, AuthenticationRequired)

    def test_connection_error(self, session):
        session.request.side_effect = requests.ConnectionError("refused")
        client = PortalClient("https://api.test", session=session)
        with pytest.raises(PortalAPIError, match="Cannot connect"):
            client.list_calls()
