"""Order Routes - Restaurant order list and status updates.

Endpoints:
- GET /orders - Latest orders (newest first), optional orderType filter
- PATCH /orders/{order_id} - Partial update (status, notes, ...)
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from typing import Optional
from database import database
from middleware import restaurant_route_guard
from models import OrderUpdate
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


def orders_collection(db, restaurant_id: str):
    return db.collection("restaurants").document(restaurant_id).collection("orders")


@router.get("")
def get_orders(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    orderType: Optional[str] = None,
):
    user, restaurant_id = restaurant_route_guard(request)
    db = database.get_db()

    try:
        query = orders_collection(db, restaurant_id).order_by(
            "createdAt", direction=firestore.Query.DESCENDING
        ).limit(limit)
        if orderType:
            query = query.where(filter=FieldFilter("orderType", "==", orderType))
        return snapshots_to_list(query.stream())
    except Exception as e:
        logger.error(f"Error fetching orders for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch orders"
        )


@router.patch("/{order_id}")
def update_order(request: Request, order_id: str, body: OrderUpdate):
    user, restaurant_id = restaurant_route_guard(request)
    db = database.get_db()
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    ref = orders_collection(db, restaurant_id).document(order_id)
    if not ref.get().exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    try:
        ref.update({**updates, "updatedAt": firestore.SERVER_TIMESTAMP})
        logger.info("Order %s updated by %s fields=%s", order_id, user.get("uid"), sorted(updates))
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating order {order_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update order"
        )
