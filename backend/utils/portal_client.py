"""HTTP client for the portal API.

Attaches a Firebase ID token as a bearer token on every request and turns
error responses into exceptions. A 401 on a non-public path raises
AuthenticationRequired with the login URL the caller should send the user to.
Nothing is retried.
"""
import logging
import os
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

# 401s on these paths are reported as plain errors, not login redirects.
PUBLIC_PATH_MARKERS = ("/onboarding/", "/health")
DEFAULT_TIMEOUT = 30


class PortalAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AuthenticationRequired(PortalAPIError):
    def __init__(self, message: str, login_url: str, payload: Any = None):
        super().__init__(message, status_code=401, payload=payload)
        self.login_url = login_url


def default_base_url() -> str:
    explicit = (os.getenv("PORTAL_API_BASE_URL") or "").strip()
    if explicit:
        return explicit.rstrip("/")
    project_id = os.getenv("FIREBASE_PROJECT_ID", "merxus")
    if os.getenv("ENVIRONMENT") == "development":
        return f"http://localhost:5001/{project_id}/us-central1/api"
    return f"https://us-central1-{project_id}.cloudfunctions.net/api"


def _error_message(response: requests.Response) -> tuple:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason, None
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error") or payload.get("message")
        if isinstance(detail, dict):
            detail = detail.get("message") or str(detail)
        if detail:
            return str(detail), payload
    return response.reason or f"HTTP {response.status_code}", payload


class PortalClient:
    """Thin wrapper over requests.Session for the portal REST surface."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        current_path: str = "/",
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.base_url = (base_url or default_base_url()).rstrip("/")
        self.token_provider = token_provider
        self.current_path = current_path
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self.timeout = timeout

    def _headers(self) -> dict:
        if not self.token_provider:
            return {}
        try:
            token = self.token_provider()
        except Exception as e:
            # Send the request anyway; the server answers 401 if it needs a token.
            logger.error("Error getting token: %s", e)
            return {}
        return {"Authorization": f"Bearer {token}"} if token else {}

    def login_url(self) -> str:
        return "/login?redirect=" + quote(self.current_path, safe="")

    def request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.ConnectionError as e:
            logger.error("Cannot connect to API server at %s. Is the emulator or deployment running?", self.base_url)
            raise PortalAPIError(f"Cannot connect to API server: {e}") from e

        if response.status_code >= 400:
            message, payload = _error_message(response)
            logger.debug("API error %s %s -> %s %s", method, url, response.status_code, message)
            is_public = any(marker in path for marker in PUBLIC_PATH_MARKERS)
            if response.status_code == 401 and not is_public and "/login" not in self.current_path:
                raise AuthenticationRequired(message, self.login_url(), payload)
            raise PortalAPIError(message, response.status_code, payload)

        if not response.content:
            return None
        return response.json()

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)

    # -- resources -------------------------------------------------------------

    def list_menu(self):
        return self.get("/menu")

    def create_menu_item(self, item: dict) -> dict:
        return self.post("/menu", json=item)

    def list_orders(self, limit: int = 50, order_type: Optional[str] = None):
        params = {"limit": limit}
        if order_type:
            params["orderType"] = order_type
        return self.get("/orders", params=params)

    def update_order(self, order_id: str, updates: dict) -> dict:
        return self.patch(f"/orders/{order_id}", json=updates)

    def list_customers(self, limit: int = 100, search: Optional[str] = None):
        params = {"limit": limit}
        if search:
            params["search"] = search
        return self.get("/customers", params=params)

    def list_calls(self, limit: int = 50):
        return self.get("/calls", params={"limit": limit})

    def get_claims(self) -> dict:
        return self.get("/auth/claims")

    def refresh_claims(self) -> dict:
        return self.post("/auth/refresh-claims")

    def get_subscription(self) -> dict:
        return self.get("/billing/subscription")
