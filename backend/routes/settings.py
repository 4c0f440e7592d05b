"""Settings Routes - Restaurant profile and notification settings.

Stored at restaurants/{restaurantId}/meta/settings.
"""
from fastapi import APIRouter, HTTPException, Request, status
from firebase_admin import firestore
from database import database
from middleware import restaurant_route_guard
from models import SettingsUpdate
from utils.firestore_docs import snapshot_to_dict
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settings", tags=["settings"])

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def settings_path(restaurant_id: str) -> str:
    return f"restaurants/{restaurant_id}/meta/settings"


def default_settings(restaurant_id: str) -> dict:
    return {
        "restaurantId": restaurant_id,
        "name": "",
        "phoneNumber": "",
        "timezone": "America/Los_Angeles",
        "businessHours": {
            day: {"open": "11:00", "close": "21:00", "closed": False} for day in WEEKDAYS
        },
        "notifySmsNumbers": [],
        "notifyEmailAddresses": [],
    }


@router.get("")
def get_settings(request: Request):
    user, restaurant_id = restaurant_route_guard(request)
    doc = database.get_db().document(settings_path(restaurant_id)).get()
    settings = snapshot_to_dict(doc)
    if settings is None:
        return default_settings(restaurant_id)
    return settings


@router.patch("")
def update_settings(request: Request, body: SettingsUpdate):
    user, restaurant_id = restaurant_route_guard(request)
    ref = database.get_db().document(settings_path(restaurant_id))
    updates = body.model_dump(exclude_unset=True, mode="json")
    try:
        ref.set(
            {**updates, "restaurantId": restaurant_id, "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
        )
        logger.info("Settings updated for %s by %s", restaurant_id, user.get("uid"))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating settings for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update settings"
        )
