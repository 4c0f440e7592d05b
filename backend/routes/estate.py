"""Estate Routes - Real-estate agent settings, listings, leads, showings and calls.

Endpoints:
- GET /estate/settings - Agent settings (defaults when none saved)
- PATCH /estate/settings - Merge settings
- GET /estate/listings - Listings (newest first)
- POST /estate/listings - Create listing
- PATCH /estate/listings/{listing_id} - Merge listing fields
- DELETE /estate/listings/{listing_id} - Delete listing
- GET /estate/leads - Captured leads (newest first)
- PATCH /estate/leads/{lead_id} - Merge lead fields (status, notes, ...)
- GET /estate/showings - Showings (soonest first)
- POST /estate/showings - Create showing
- PATCH /estate/showings/{showing_id} - Merge showing fields
- DELETE /estate/showings/{showing_id} - Delete showing
- GET /estate/calls - Recent calls answered for the agent

Data lives under agents/{agentId}; calls come from the shared callSessions collection.
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel
from database import database
from middleware import agent_route_guard
from models import EstateSettingsUpdate, ListingPayload, LeadUpdate, ShowingPayload
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/estate", tags=["estate"])

# resource -> (sub-collection, sort field, direction)
AGENT_COLLECTIONS = {
    "listings": ("listings", "createdAt", firestore.Query.DESCENDING),
    "leads": ("leads", "captured_at", firestore.Query.DESCENDING),
    "showings": ("showings", "scheduled_date", firestore.Query.ASCENDING),
}

DEPARTMENTS = (
    ("new_buyers", "New Buyer Leads"),
    ("sellers", "Potential Sellers"),
    ("showings", "Showing Requests"),
    ("general", "General Questions"),
    ("voicemail", "Voicemail / Inbox"),
)
INTENT_ROUTES = (
    ("listing_info", "new_buyers"),
    ("showing_request", "showings"),
    ("seller_lead", "sellers"),
    ("general_question", "general"),
    ("after_hours", "voicemail"),
)


def agent_settings_path(agent_id: str) -> str:
    return f"agents/{agent_id}/meta/settings"


def default_estate_settings(agent_id: str, email: str = "") -> dict:
    weekday = {"open": "09:00", "close": "18:00", "closed": False}
    return {
        "agentId": agent_id,
        "name": "",
        "brandName": "",
        "email": email or "",
        "phonePrimary": "",
        "address": "",
        "websiteUrl": "",
        "brokerage": None,
        "licenseNumber": None,
        "markets": [],
        "languagesSupported": ["en", "es"],
        "timezone": "America/Los_Angeles",
        "autoSendFlyers": False,
        "businessHours": {
            **{day: dict(weekday) for day in ("monday", "tuesday", "wednesday", "thursday", "friday")},
            "saturday": {"open": "10:00", "close": "16:00", "closed": False},
            "sunday": {"open": None, "close": None, "closed": True},
        },
        "showingPreferences": {"minNoticeHours": 2, "allowSameDay": True, "blockOff": []},
        "routing": {
            "departments": [
                {"id": dept_id, "label": label, "forward_to": None} for dept_id, label in DEPARTMENTS
            ],
            "intents": [{"name": name, "routes_to": route} for name, route in INTENT_ROUTES],
            "after_hours": {"mode": "voicemail_only", "default_route": "voicemail"},
        },
        "twilioPhoneNumber": "",
        "twilioNumberSid": "",
        "aiConfig": {
            "model": "gpt-4o-mini",
            "voiceName": "alloy",
            "language": "en-US",
            "systemPrompt": "",
        },
    }


def agent_collection(db, agent_id: str, resource: str):
    name, _, _ = AGENT_COLLECTIONS[resource]
    return db.collection("agents").document(agent_id).collection(name)


def _server_error(verb: str, resource: str, agent_id: str, e: Exception):
    logger.error(f"Failed to {verb} {resource} for agent {agent_id}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {verb} {resource}"
    )


# ============================================================================
# SETTINGS
# ============================================================================

@router.get("/settings")
def get_estate_settings(request: Request):
    user, agent_id = agent_route_guard(request)
    try:
        settings = snapshot_to_dict(database.get_db().document(agent_settings_path(agent_id)).get())
    except Exception as e:
        logger.error(f"Error fetching estate settings for {agent_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch estate settings"
        )
    if settings is None:
        return default_estate_settings(agent_id, user.get("email"))
    return settings


@router.patch("/settings")
def update_estate_settings(request: Request, body: EstateSettingsUpdate):
    user, agent_id = agent_route_guard(request)
    ref = database.get_db().document(agent_settings_path(agent_id))
    updates = body.model_dump(exclude_unset=True, mode="json")
    try:
        ref.set(
            {**updates, "agentId": agent_id, "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
        )
        logger.info("Estate settings updated for %s by %s", agent_id, user.get("uid"))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating estate settings for {agent_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update estate settings"
        )


# ============================================================================
# LISTINGS / LEADS / SHOWINGS
# ============================================================================

def _list(agent_id: str, resource: str) -> list:
    _, sort_field, direction = AGENT_COLLECTIONS[resource]
    query = agent_collection(database.get_db(), agent_id, resource).order_by(sort_field, direction=direction)
    return snapshots_to_list(query.stream())


def _create(agent_id: str, resource: str, body: BaseModel) -> dict:
    _, ref = agent_collection(database.get_db(), agent_id, resource).add({
        **body.model_dump(exclude_unset=True),
        "agentId": agent_id,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    })
    logger.info("Agent %s created %s %s", agent_id, resource, ref.id)
    return snapshot_to_dict(ref.get())


def _merge(agent_id: str, resource: str, doc_id: str, body: BaseModel) -> dict:
    ref = agent_collection(database.get_db(), agent_id, resource).document(doc_id)
    ref.set({**body.model_dump(exclude_unset=True), "updatedAt": firestore.SERVER_TIMESTAMP}, merge=True)
    return snapshot_to_dict(ref.get())


def _delete(agent_id: str, resource: str, doc_id: str) -> dict:
    agent_collection(database.get_db(), agent_id, resource).document(doc_id).delete()
    logger.info("Agent %s deleted %s %s", agent_id, resource, doc_id)
    return {"success": True}


@router.get("/listings")
def get_listings(request: Request):
    user, agent_id = agent_route_guard(request)
    try:
        return _list(agent_id, "listings")
    except Exception as e:
        raise _server_error("fetch", "listings", agent_id, e)


@router.post("/listings", status_code=status.HTTP_201_CREATED)
def create_listing(request: Request, body: ListingPayload):
    user, agent_id = agent_route_guard(request)
    try:
        return _create(agent_id, "listings", body)
    except Exception as e:
        raise _server_error("create", "listing", agent_id, e)


@router.patch("/listings/{listing_id}")
def update_listing(request: Request, listing_id: str, body: ListingPayload):
    user, agent_id = agent_route_guard(request)
    try:
        return _merge(agent_id, "listings", listing_id, body)
    except Exception as e:
        raise _server_error("update", "listing", agent_id, e)


@router.delete("/listings/{listing_id}")
def delete_listing(request: Request, listing_id: str):
    user, agent_id = agent_route_guard(request)
    try:
        return _delete(agent_id, "listings", listing_id)
    except Exception as e:
        raise _server_error("delete", "listing", agent_id, e)


@router.get("/leads")
def get_leads(request: Request):
    user, agent_id = agent_route_guard(request)
    try:
        return _list(agent_id, "leads")
    except Exception as e:
        raise _server_error("fetch", "leads", agent_id, e)


@router.patch("/leads/{lead_id}")
def update_lead(request: Request, lead_id: str, body: LeadUpdate):
    user, agent_id = agent_route_guard(request)
    try:
        return _merge(agent_id, "leads", lead_id, body)
    except Exception as e:
        raise _server_error("update", "lead", agent_id, e)


@router.get("/showings")
def get_showings(request: Request):
    user, agent_id = agent_route_guard(request)
    try:
        return _list(agent_id, "showings")
    except Exception as e:
        raise _server_error("fetch", "showings", agent_id, e)


@router.post("/showings", status_code=status.HTTP_201_CREATED)
def create_showing(request: Request, body: ShowingPayload):
    user, agent_id = agent_route_guard(request)
    try:
        return _create(agent_id, "showings", body)
    except Exception as e:
        raise _server_error("create", "showing", agent_id, e)


@router.patch("/showings/{showing_id}")
def update_showing(request: Request, showing_id: str, body: ShowingPayload):
    user, agent_id = agent_route_guard(request)
    try:
        return _merge(agent_id, "showings", showing_id, body)
    except Exception as e:
        raise _server_error("update", "showing", agent_id, e)


@router.delete("/showings/{showing_id}")
def delete_showing(request: Request, showing_id: str):
    user, agent_id = agent_route_guard(request)
    try:
        return _delete(agent_id, "showings", showing_id)
    except Exception as e:
        raise _server_error("delete", "showing", agent_id, e)


# ============================================================================
# CALLS
# ============================================================================

@router.get("/calls")
def get_agent_calls(request: Request, limit: int = Query(50, ge=1, le=500)):
    user, agent_id = agent_route_guard(request)
    try:
        query = database.get_db().collection("callSessions").where(
            filter=FieldFilter("agentId", "==", agent_id)
        ).order_by("createdAt", direction=firestore.Query.DESCENDING).limit(limit)
        return snapshots_to_list(query.stream())
    except Exception as e:
        raise _server_error("fetch", "calls", agent_id, e)
