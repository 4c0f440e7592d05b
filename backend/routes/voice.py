"""Voice Routes - Voice office settings, team members and call routing rules.

Endpoints:
- GET /voice/settings - Office settings (defaults when none saved)
- PATCH /voice/settings - Merge settings
- GET /voice/users - Office team (admins only)
- POST /voice/users/invite - Create or reuse an Auth user and attach it to the office
- PATCH /voice/users/{uid} - Change role / disabled flag
- DELETE /voice/users/{uid} - Disable (soft delete)
- GET /voice/routing-rules - Rules by priority
- POST /voice/routing-rules - Create rule
- PATCH /voice/routing-rules/{rule_id} - Update rule
- DELETE /voice/routing-rules/{rule_id} - Delete rule

Data lives under offices/{officeId}: meta/settings, users/{uid}, routingRules/{ruleId}.
"""
from fastapi import APIRouter, HTTPException, Request, status
from firebase_admin import auth as firebase_auth
from firebase_admin import firestore
from datetime import datetime, timezone
from database import database
from middleware import office_route_guard
from models import (
    OFFICE_ADMIN_ROLES,
    TenantType,
    VoiceSettingsUpdate,
    OfficeUserInvite,
    OfficeUserUpdate,
    RoutingRuleCreate,
    RoutingRuleUpdate,
)
from routes.settings import WEEKDAYS
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
import logging
import os

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/voice", tags=["voice"])


def office_ref(db, office_id: str):
    return db.collection("offices").document(office_id)


def voice_settings_path(office_id: str) -> str:
    return f"offices/{office_id}/meta/settings"


def default_voice_settings(office_id: str) -> dict:
    return {
        "officeId": office_id,
        "name": "",
        "phoneNumber": "",
        "address": "",
        "websiteUrl": "",
        "timezone": "America/Los_Angeles",
        "twilioPhoneNumber": "",
        "twilioNumberSid": "",
        "businessHours": {
            day: {"open": "09:00", "close": "17:00", "closed": False} for day in WEEKDAYS
        },
        "aiConfig": {
            "model": "gpt-4o-mini",
            "voiceName": "alloy",
            "language": "en-US",
            "systemPrompt": "",
        },
    }


def require_office_admin(user: dict, detail: str = "Insufficient permissions"):
    if user.get("role") not in OFFICE_ADMIN_ROLES:
        logger.warning("Office admin access denied uid=%s role=%s", user.get("uid"), user.get("role"))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


# ============================================================================
# SETTINGS
# ============================================================================

@router.get("/settings")
def get_voice_settings(request: Request):
    user, office_id = office_route_guard(request)
    try:
        settings = snapshot_to_dict(database.get_db().document(voice_settings_path(office_id)).get())
    except Exception as e:
        logger.error(f"Error fetching voice settings for {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch voice settings"
        )
    if settings is None:
        return default_voice_settings(office_id)
    return settings


@router.patch("/settings")
def update_voice_settings(request: Request, body: VoiceSettingsUpdate):
    user, office_id = office_route_guard(request)
    ref = database.get_db().document(voice_settings_path(office_id))
    updates = body.model_dump(exclude_unset=True, mode="json")
    try:
        ref.set(
            {**updates, "officeId": office_id, "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
        )
        logger.info("Voice settings updated for %s by %s", office_id, user.get("uid"))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating voice settings for {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update voice settings"
        )


# ============================================================================
# TEAM
# ============================================================================

@router.get("/users")
def get_voice_users(request: Request):
    user, office_id = office_route_guard(request)
    require_office_admin(user)
    try:
        query = office_ref(database.get_db(), office_id).collection("users").order_by(
            "invitedAt", direction=firestore.Query.DESCENDING
        )
        return snapshots_to_list(query.stream())
    except Exception as e:
        logger.error(f"Error fetching users for office {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch users"
        )


def _get_or_create_auth_user(email: str, display_name: str, app):
    try:
        return firebase_auth.get_user_by_email(email, app=app)
    except firebase_auth.UserNotFoundError:
        return firebase_auth.create_user(
            email=email,
            display_name=display_name or None,
            email_verified=False,
            disabled=False,
            app=app,
        )


@router.post("/users/invite", status_code=status.HTTP_201_CREATED)
def invite_voice_user(request: Request, body: OfficeUserInvite):
    """
    Invite a team member.

    Reuses the Auth account when the email is already registered, sets the
    office claims (role, officeId, tenantId, type) and records the member under
    offices/{officeId}/users. The returned inviteLink lets the user choose a
    password; sending it is up to the caller.
    """
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can invite users")
    app = database.get_app()
    role = body.role.value

    try:
        record = _get_or_create_auth_user(body.email, body.displayName, app)
        firebase_auth.set_custom_user_claims(record.uid, {
            "role": role,
            "officeId": office_id,
            "tenantId": office_id,
            "type": TenantType.VOICE.value,
        }, app=app)
        office_ref(database.get_db(), office_id).collection("users").document(record.uid).set({
            "uid": record.uid,
            "email": record.email,
            "displayName": record.display_name or body.displayName or "",
            "role": role,
            "invitedAt": datetime.now(timezone.utc).isoformat(),
            "disabled": False,
        }, merge=True)
        frontend_url = os.environ.get("FRONTEND_URL", "http://localhost:3000")
        invite_link = firebase_auth.generate_password_reset_link(
            body.email,
            action_code_settings=firebase_auth.ActionCodeSettings(url=f"{frontend_url}/login?fromInvite=true"),
            app=app,
        )
    except Exception as e:
        logger.error(f"Error inviting user to office {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e) or "Failed to invite user"
        )

    logger.info("User %s invited to office %s as %s by %s", record.uid, office_id, role, user.get("uid"))
    return {"uid": record.uid, "email": record.email, "role": role, "inviteLink": invite_link}


@router.patch("/users/{uid}")
def update_voice_user(request: Request, uid: str, body: OfficeUserUpdate):
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can update users")
    app = database.get_app()
    updates = body.model_dump(exclude_none=True, mode="json")

    try:
        current = firebase_auth.get_user(uid, app=app).custom_claims or {}
        claims = {**current, "officeId": office_id}
        if body.role:
            claims["role"] = body.role.value
        firebase_auth.set_custom_user_claims(uid, claims, app=app)
        if body.disabled is not None:
            firebase_auth.update_user(uid, disabled=body.disabled, app=app)

        ref = office_ref(database.get_db(), office_id).collection("users").document(uid)
        ref.set(updates, merge=True)
        logger.info("Office user %s updated by %s fields=%s", uid, user.get("uid"), sorted(updates))
        return snapshot_to_dict(ref.get())
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except Exception as e:
        logger.error(f"Error updating office user {uid}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update user"
        )


@router.delete("/users/{uid}")
def delete_voice_user(request: Request, uid: str):
    """Soft delete: the Auth account and the member record are marked disabled."""
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can disable users")
    try:
        firebase_auth.update_user(uid, disabled=True, app=database.get_app())
        office_ref(database.get_db(), office_id).collection("users").document(uid).set(
            {"disabled": True}, merge=True
        )
        logger.info("Office user %s disabled by %s", uid, user.get("uid"))
        return {"success": True}
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except Exception as e:
        logger.error(f"Error disabling office user {uid}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disable user"
        )


# ============================================================================
# ROUTING RULES
# ============================================================================

def rules_collection(db, office_id: str):
    return office_ref(db, office_id).collection("routingRules")


@router.get("/routing-rules")
def get_routing_rules(request: Request):
    user, office_id = office_route_guard(request)
    try:
        query = rules_collection(database.get_db(), office_id).order_by("priority")
        return snapshots_to_list(query.stream())
    except Exception as e:
        logger.error(f"Error fetching routing rules for {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch routing rules"
        )


@router.post("/routing-rules", status_code=status.HTTP_201_CREATED)
def create_routing_rule(request: Request, body: RoutingRuleCreate):
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can create routing rules")
    if not body.name or not body.action:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and action are required")

    try:
        _, ref = rules_collection(database.get_db(), office_id).add({
            **body.model_dump(),
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })
        logger.info("Routing rule %s created for office %s", ref.id, office_id)
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error creating routing rule for {office_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create routing rule"
        )


@router.patch("/routing-rules/{rule_id}")
def update_routing_rule(request: Request, rule_id: str, body: RoutingRuleUpdate):
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can update routing rules")
    ref = rules_collection(database.get_db(), office_id).document(rule_id)
    if not ref.get().exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Routing rule not found")

    try:
        ref.update({**body.model_dump(exclude_unset=True), "updatedAt": firestore.SERVER_TIMESTAMP})
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating routing rule {rule_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update routing rule"
        )


@router.delete("/routing-rules/{rule_id}")
def delete_routing_rule(request: Request, rule_id: str):
    user, office_id = office_route_guard(request)
    require_office_admin(user, "Only admins can delete routing rules")
    try:
        rules_collection(database.get_db(), office_id).document(rule_id).delete()
        logger.info("Routing rule %s deleted from office %s", rule_id, office_id)
        return {"success": True}
    except Exception as e:
        logger.error(f"Error deleting routing rule {rule_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete routing rule"
        )
