"""Super Admin Routes - Cross-tenant user administration.

Only callers whose claims carry role=super_admin may use these endpoints.
"""
from fastapi import APIRouter, HTTPException, Request, status
from firebase_admin import auth as firebase_auth
from database import database
from middleware import super_admin_route_guard
from models import SuperAdminUserUpdate
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/super-admin", tags=["super-admin"])

LIST_PAGE_SIZE = 1000


def format_user(record) -> dict:
    claims = record.custom_claims or {}
    metadata = record.user_metadata
    return {
        "uid": record.uid,
        "email": record.email,
        "displayName": record.display_name or "",
        "disabled": record.disabled,
        "emailVerified": record.email_verified,
        "createdAt": metadata.creation_timestamp if metadata else None,
        "lastSignIn": metadata.last_sign_in_timestamp if metadata else None,
        "role": claims.get("role", ""),
        "tenantType": claims.get("type", ""),
        "restaurantId": claims.get("restaurantId", ""),
        "officeId": claims.get("officeId", ""),
        "agentId": claims.get("agentId", ""),
        "tenantId": claims.get("tenantId", ""),
        "phoneNumber": record.phone_number or "",
    }


@router.get("/users")
def get_all_users(request: Request, includeDisabled: bool = False):
    super_admin_route_guard(request)
    try:
        page = firebase_auth.list_users(max_results=LIST_PAGE_SIZE, app=database.get_app())
        users = [format_user(record) for record in page.iterate_all()]
    except Exception as e:
        logger.error(f"Error fetching all users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch users"
        )

    if not includeDisabled:
        users = [u for u in users if not u["disabled"]]
    users.sort(key=lambda u: u["createdAt"] or 0, reverse=True)
    return users


@router.get("/users/{uid}")
def get_user(request: Request, uid: str):
    super_admin_route_guard(request)
    try:
        return format_user(firebase_auth.get_user(uid, app=database.get_app()))
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


@router.patch("/users/{uid}")
def update_user(request: Request, uid: str, body: SuperAdminUserUpdate):
    """
    Update auth profile fields and, when given, the role claim.

    Phone numbers are contact info kept in tenant settings, not the
    Firebase phone-auth number, so they are not updated here.
    """
    admin_user = super_admin_route_guard(request)
    app = database.get_app()

    profile = {
        key: value
        for key, value in (
            ("display_name", body.displayName),
            ("disabled", body.disabled),
            ("password", body.password),
            ("email", body.email),
        )
        if value is not None
    }

    try:
        if profile:
            firebase_auth.update_user(uid, app=app, **profile)
        if body.role:
            current = firebase_auth.get_user(uid, app=app).custom_claims or {}
            firebase_auth.set_custom_user_claims(uid, {**current, "role": body.role.value}, app=app)
        record = firebase_auth.get_user(uid, app=app)
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except Exception as e:
        logger.error(f"Error updating user {uid}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update user"
        )

    logger.info("User %s updated by super admin %s fields=%s", uid, admin_user.get("uid"), sorted(profile))
    return {**format_user(record), "message": "User updated successfully"}
