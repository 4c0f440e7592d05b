"""Call Routes - Call log and transcripts.

Endpoints:
- GET /calls - Restaurant call log (newest first)
- GET /calls/{call_id}/transcript - Transcript for restaurant, voice and real-estate tenants
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from firebase_admin import firestore
from database import database
from middleware import restaurant_route_guard, require_auth
from models import TenantType
from utils.firestore_docs import snapshots_to_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calls", tags=["calls"])


def can_access_call(user: dict, call: dict) -> bool:
    """
    Whether a tenant user may read a call session.

    Voice users match on officeId, restaurant users on restaurantId and
    real-estate users on agentId; tenantId is accepted in every case.
    """
    tenant_type = user.get("type")
    tenant_id = user.get("tenantId")

    if tenant_type == TenantType.VOICE.value or user.get("officeId"):
        owner = call.get("officeId") or call.get("tenantId")
        return owner is not None and owner in (user.get("officeId"), tenant_id)
    if tenant_type == TenantType.RESTAURANT.value or user.get("restaurantId"):
        owner = call.get("restaurantId") or call.get("tenantId")
        return owner is not None and owner in (user.get("restaurantId"), tenant_id)
    if tenant_type == TenantType.REAL_ESTATE.value or user.get("agentId"):
        owner = call.get("agentId") or call.get("tenantId")
        return owner is not None and owner in (user.get("agentId"), tenant_id)
    return False


@router.get("")
def get_calls(request: Request, limit: int = Query(50, ge=1, le=500)):
    user, restaurant_id = restaurant_route_guard(request)
    db = database.get_db()
    try:
        docs = (
            db.collection("restaurants").document(restaurant_id).collection("calls")
            .order_by("startedAt", direction=firestore.Query.DESCENDING)
            .limit(limit)
            .stream()
        )
        return snapshots_to_list(docs)
    except Exception as e:
        logger.error(f"Error fetching calls for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch calls"
        )


@router.get("/{call_id}/transcript")
def get_call_transcript(request: Request, call_id: str):
    user = require_auth(request)
    if not any(user.get(k) for k in ("restaurantId", "officeId", "agentId", "tenantId", "type")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant ID required")

    # Call sessions for every tenant type live in the root collection.
    doc = database.get_db().collection("callSessions").document(call_id).get()
    if not doc.exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")

    call = doc.to_dict() or {}
    if not can_access_call(user, call):
        logger.warning("Transcript access denied uid=%s call=%s", user.get("uid"), call_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return {
        "transcript": call.get("transcript") or call.get("assistantTranscript") or call.get("callerTranscript") or "",
        "callerTranscript": call.get("callerTranscript") or "",
        "assistantTranscript": call.get("assistantTranscript") or "",
        "translatedTranscript": call.get("translatedTranscript"),
        "translatedCallerTranscript": call.get("translatedCallerTranscript"),
        "translatedAssistantTranscript": call.get("translatedAssistantTranscript"),
        "detectedLanguage": call.get("detectedLanguage"),
    }
