"""Live Routes - Server-Sent Events over Firestore subscriptions.

Endpoints:
- GET /live/settings - Stream of the restaurant settings document
- GET /live/{resource} - Stream of a restaurant sub-collection
  (orders, calls, customers, menu, reservations)

Each event carries the full current state:
    event: snapshot  data: {"data": [...], "loading": false}
    event: error     data: {"error": "..."}
The subscription is closed when the client disconnects.
"""
from fastapi import APIRouter, HTTPException, Request, Query, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from typing import Optional
from database import database
from middleware import restaurant_route_guard
from models import SortDirection
from routes.settings import settings_path
from services.realtime import CollectionSubscription, DocumentSubscription, QueryOptions, OrderByClause
from utils.firestore_docs import to_jsonable
import anyio
import json
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/live", tags=["live"])

# resource -> (sub-collection, default sort field)
LIVE_RESOURCES = {
    "orders": ("orders", "createdAt"),
    "calls": ("calls", "startedAt"),
    "customers": ("customers", "lastOrderAt"),
    "menu": ("menuItems", None),
    "reservations": ("reservations", "createdAt"),
}


def format_sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(to_jsonable(payload))}\n\n"


async def subscription_events(subscription, request: Optional[Request] = None):
    """Yield SSE frames for each state change; always closes the subscription."""
    try:
        await run_in_threadpool(subscription.start)
        async for state in subscription.updates():
            if request is not None and await request.is_disconnected():
                break
            if state.closed:
                break
            if state.error is not None:
                yield format_sse("error", {"error": str(state.error)})
            elif not state.loading:
                yield format_sse("snapshot", {"data": state.data, "loading": False})
    finally:
        # Unsubscribing joins the SDK's delivery thread; it must finish even on disconnect.
        with anyio.CancelScope(shield=True):
            await run_in_threadpool(subscription.close)
        logger.debug("Live subscription closed path=%s", subscription.path)


def _sse_response(subscription, request: Request) -> StreamingResponse:
    return StreamingResponse(
        subscription_events(subscription, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/settings")
def live_settings(request: Request):
    user, restaurant_id = restaurant_route_guard(request)
    subscription = DocumentSubscription(database.get_db(), settings_path(restaurant_id))
    logger.info("Live settings stream opened uid=%s restaurant=%s", user.get("uid"), restaurant_id)
    return _sse_response(subscription, request)


@router.get("/{resource}")
def live_collection(
    request: Request,
    resource: str,
    limit: int = Query(50, ge=1, le=500),
    direction: SortDirection = SortDirection.DESC,
):
    user, restaurant_id = restaurant_route_guard(request)
    if resource not in LIVE_RESOURCES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown live resource: {resource}")

    collection, sort_field = LIVE_RESOURCES[resource]
    options = QueryOptions(
        order_by=[OrderByClause(field=sort_field, direction=direction)] if sort_field else [],
        limit=limit,
    )
    subscription = CollectionSubscription(
        database.get_db(), f"restaurants/{restaurant_id}/{collection}", options
    )
    logger.info("Live %s stream opened uid=%s restaurant=%s", resource, user.get("uid"), restaurant_id)
    return _sse_response(subscription, request)
