"""Reservation Routes - Restaurant table reservations.

Endpoints:
- GET /reservations - Latest reservations (newest first), optional status filter
- GET /reservations/{reservation_id} - Single reservation
- POST /reservations - Create (source defaults to "manual")
- PATCH /reservations/{reservation_id} - Partial update
- DELETE /reservations/{reservation_id} - Delete
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from typing import Optional
from database import database
from middleware import restaurant_route_guard
from models import ReservationCreate, ReservationUpdate
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reservations", tags=["reservations"])


def reservations_collection(db, restaurant_id: str):
    return db.collection("restaurants").document(restaurant_id).collection("reservations")


@router.get("")
def get_reservations(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    user, restaurant_id = restaurant_route_guard(request)
    db = database.get_db()

    try:
        query = reservations_collection(db, restaurant_id).order_by(
            "createdAt", direction=firestore.Query.DESCENDING
        ).limit(limit)
        if status_filter:
            query = query.where(filter=FieldFilter("status", "==", status_filter))
        return snapshots_to_list(query.stream())
    except Exception as e:
        logger.error(f"Error fetching reservations for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch reservations"
        )


@router.get("/{reservation_id}")
def get_reservation(request: Request, reservation_id: str):
    user, restaurant_id = restaurant_route_guard(request)
    ref = reservations_collection(database.get_db(), restaurant_id).document(reservation_id)
    try:
        reservation = snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error fetching reservation {reservation_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch reservation"
        )
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return reservation


@router.post("", status_code=status.HTTP_201_CREATED)
def create_reservation(request: Request, body: ReservationCreate):
    user, restaurant_id = restaurant_route_guard(request)
    data = {
        "customerName": body.customerName or "Unknown",
        "customerPhone": body.customerPhone,
        "partySize": body.partySize,
        "date": body.date,
        "time": body.time,
        "specialRequests": body.specialRequests,
        "status": body.status or "confirmed",
        "source": body.source or "manual",
        "notes": body.notes,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }
    try:
        _, ref = reservations_collection(database.get_db(), restaurant_id).add(data)
        logger.info("Reservation %s created for %s by %s", ref.id, restaurant_id, user.get("uid"))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error creating reservation for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create reservation"
        )


@router.patch("/{reservation_id}")
def update_reservation(request: Request, reservation_id: str, body: ReservationUpdate):
    user, restaurant_id = restaurant_route_guard(request)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    ref = reservations_collection(database.get_db(), restaurant_id).document(reservation_id)
    if not ref.get().exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    try:
        ref.update({**updates, "updatedAt": firestore.SERVER_TIMESTAMP})
        logger.info("Reservation %s updated by %s fields=%s", reservation_id, user.get("uid"), sorted(updates))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating reservation {reservation_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update reservation"
        )


@router.delete("/{reservation_id}")
def delete_reservation(request: Request, reservation_id: str):
    user, restaurant_id = restaurant_route_guard(request)
    try:
        reservations_collection(database.get_db(), restaurant_id).document(reservation_id).delete()
        logger.info("Reservation %s deleted by %s", reservation_id, user.get("uid"))
        return {"success": True}
    except Exception as e:
        logger.error(f"Error deleting reservation {reservation_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete reservation"
        )
