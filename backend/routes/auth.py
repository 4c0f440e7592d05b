"""Auth Routes - Custom-claims inspection and repair.

Endpoints:
- GET /auth/claims - Current user's custom claims
- POST /auth/refresh-claims - Fill in a missing tenantId from the vertical claim
"""
from fastapi import APIRouter, HTTPException, Request, status
from firebase_admin import auth as firebase_auth
from middleware import require_auth
from services.claims_service import claims_service, ClaimsError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/claims")
def get_claims(request: Request):
    user = require_auth(request)
    try:
        return claims_service.get_claims(user["uid"])
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


@router.post("/refresh-claims")
def refresh_claims(request: Request):
    user = require_auth(request)
    try:
        result = claims_service.fix_claims(user["uid"])
    except ClaimsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "No tenant ID found in user claims. Please contact support.",
                "currentClaims": e.claims,
            },
        )
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if not result.needs_update:
        return {
            "message": "Claims are already up to date",
            "claims": result.old_claims,
            "needsUpdate": False,
        }

    return {
        "message": "Claims updated successfully. Please log out and log back in for changes to take effect.",
        "oldClaims": result.old_claims,
        "newClaims": result.new_claims,
        "needsUpdate": True,
    }
