"""Customer Routes - Restaurant customer directory.

Endpoints:
- GET /customers - Recent customers, or name/phone search
- GET /customers/{customer_id} - Customer with their recent orders
- PATCH /customers/{customer_id} - Update tags and notes
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from typing import Optional
from database import database
from middleware import restaurant_route_guard
from models import CustomerUpdate
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/customers", tags=["customers"])

RECENT_ORDERS_LIMIT = 20


def _restaurant(db, restaurant_id: str):
    return db.collection("restaurants").document(restaurant_id)


def matches_search(customer: dict, search: str) -> bool:
    q = search.lower()
    name = (customer.get("name") or "").lower()
    phone = (customer.get("phone") or "").lower()
    return q in name or q in phone


@router.get("")
def get_customers(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    search: Optional[str] = None,
):
    user, restaurant_id = restaurant_route_guard(request)
    customers_ref = _restaurant(database.get_db(), restaurant_id).collection("customers")
    search = (search or "").strip()

    try:
        if search:
            # Fetch a page by name and filter in memory.
            docs = customers_ref.order_by("name").limit(limit).stream()
            return [c for c in snapshots_to_list(docs) if matches_search(c, search)]

        docs = customers_ref.order_by("lastOrderAt", direction=firestore.Query.DESCENDING).limit(limit).stream()
        return snapshots_to_list(docs)
    except Exception as e:
        logger.error(f"Error fetching customers for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch customers"
        )


@router.get("/{customer_id}")
def get_customer_detail(request: Request, customer_id: str):
    user, restaurant_id = restaurant_route_guard(request)
    restaurant = _restaurant(database.get_db(), restaurant_id)

    customer = snapshot_to_dict(restaurant.collection("customers").document(customer_id).get())
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    try:
        orders = (
            restaurant.collection("orders")
            .where(filter=FieldFilter("customerId", "==", customer_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(RECENT_ORDERS_LIMIT)
            .stream()
        )
        recent_orders = [
            {
                "id": order["id"],
                "createdAt": order.get("createdAt"),
                "total": order.get("total"),
                "orderType": order.get("orderType"),
                "source": order.get("source"),
            }
            for order in snapshots_to_list(orders)
        ]
    except Exception as e:
        logger.error(f"Error fetching customer detail {customer_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch customer details"
        )

    return {**customer, "recentOrders": recent_orders}


@router.patch("/{customer_id}")
def update_customer(request: Request, customer_id: str, body: CustomerUpdate):
    user, restaurant_id = restaurant_route_guard(request)
    ref = _restaurant(database.get_db(), restaurant_id).collection("customers").document(customer_id)
    if not ref.get().exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    try:
        ref.update({"tags": body.tags, "notes": body.notes})
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating customer {customer_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update customer"
        )
