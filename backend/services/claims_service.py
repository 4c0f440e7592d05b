"""Custom-claims repair.

Older accounts carry their tenant under a vertical-specific claim
(restaurantId, officeId, agentId) but no tenantId. The fix copies that id
into tenantId and leaves every other claim untouched. Running it again is a
no-op.
"""
import logging
from typing import Any, Dict, Optional

from firebase_admin import auth as firebase_auth

from database import database
from models import ClaimsFixResult, TENANT_CLAIM_KEYS

logger = logging.getLogger(__name__)


class ClaimsError(Exception):
    """Claims cannot be repaired (no tenant id anywhere in them)."""

    def __init__(self, message: str, claims: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.claims = claims or {}


def compute_tenant_id(claims: Optional[Dict[str, Any]]) -> Optional[str]:
    claims = claims or {}
    for key in TENANT_CLAIM_KEYS:
        if claims.get(key):
            return claims[key]
    return None


def repaired_claims(claims: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Claims with tenantId filled in. Raises ClaimsError if no tenant id exists."""
    claims = dict(claims or {})
    tenant_id = compute_tenant_id(claims)
    if not tenant_id:
        raise ClaimsError("No tenant ID found in user claims", claims)
    if claims.get("tenantId"):
        return claims
    return {**claims, "tenantId": tenant_id}


class ClaimsService:
    """Reads and repairs Firebase Auth custom claims."""

    def _app(self):
        return database.get_app()

    def get_user(self, uid: str):
        return firebase_auth.get_user(uid, app=self._app())

    def get_user_by_email(self, email: str):
        return firebase_auth.get_user_by_email(email.strip(), app=self._app())

    def get_claims(self, uid: str) -> Dict[str, Any]:
        user = self.get_user(uid)
        return {
            "uid": user.uid,
            "email": user.email,
            "claims": dict(user.custom_claims or {}),
        }

    def fix_claims(self, uid: str, dry_run: bool = False) -> ClaimsFixResult:
        user = self.get_user(uid)
        current = dict(user.custom_claims or {})
        updated = repaired_claims(current)

        if updated == current:
            logger.info("Claims already up to date uid=%s", uid)
            return ClaimsFixResult(uid=uid, needs_update=False, old_claims=current, new_claims=current)

        if dry_run:
            logger.info("Dry run: would set claims uid=%s claims=%s", uid, updated)
        else:
            firebase_auth.set_custom_user_claims(uid, updated, app=self._app())
            logger.info("Updated claims uid=%s tenantId=%s", uid, updated["tenantId"])
        return ClaimsFixResult(uid=uid, needs_update=True, old_claims=current, new_claims=updated)

    def fix_claims_by_email(self, email: str, dry_run: bool = False) -> ClaimsFixResult:
        user = self.get_user_by_email(email)
        logger.info("Found user %s for %s", user.uid, email)
        return self.fix_claims(user.uid, dry_run=dry_run)


claims_service = ClaimsService()
