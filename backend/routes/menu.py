"""Menu Routes - Restaurant menu CRUD and CSV import.

Endpoints:
- GET /menu - All items sorted by category, then name
- POST /menu - Create item
- POST /menu/import - Bulk create from CSV (text/csv body or {"csv": "..."})
- PUT /menu/{item_id} - Replace item fields (merge)
- PATCH /menu/{item_id} - Toggle availability
- DELETE /menu/{item_id} - Delete item
"""
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from firebase_admin import firestore
from database import database
from middleware import restaurant_route_guard
from models import MenuItemCreate, AvailabilityUpdate, MenuImportRequest
from services.menu_import import parse_menu_csv, import_menu_items, MenuImportError
from utils.firestore_docs import snapshot_to_dict, snapshots_to_list
from pydantic import ValidationError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/menu", tags=["menu"])


def menu_collection(db, restaurant_id: str):
    return db.collection("restaurants").document(restaurant_id).collection("menuItems")


def create_menu_item(db, restaurant_id: str, item: MenuItemCreate) -> dict:
    _, ref = menu_collection(db, restaurant_id).add({
        "restaurantId": restaurant_id,
        **item.model_dump(),
        "createdAt": firestore.SERVER_TIMESTAMP,
    })
    return snapshot_to_dict(ref.get())


@router.get("")
def get_menu(request: Request):
    user, restaurant_id = restaurant_route_guard(request)
    db = database.get_db()
    try:
        # Sorted in memory to avoid a composite index.
        items = snapshots_to_list(menu_collection(db, restaurant_id).stream())
        items.sort(key=lambda i: (i.get("category") or "", i.get("name") or ""))
        return items
    except Exception as e:
        logger.error(f"Error fetching menu for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch menu"
        )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_item(request: Request, body: MenuItemCreate):
    user, restaurant_id = restaurant_route_guard(request)
    try:
        item = create_menu_item(database.get_db(), restaurant_id, body)
        logger.info("Menu item %s created for %s", item["id"], restaurant_id)
        return item
    except Exception as e:
        logger.error(f"Error creating menu item for {restaurant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create menu item"
        )


@router.post("/import")
async def import_menu(request: Request):
    """
    Import menu items from CSV.

    Required columns: name, price, category. Optional: description,
    isAvailable, tags (semicolon separated). Each item is created on its own;
    failures are reported per item and do not stop the import.
    """
    user, restaurant_id = await run_in_threadpool(restaurant_route_guard, request)
    db = database.get_db()

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            text = MenuImportRequest.model_validate(await request.json()).csv
        except (ValidationError, ValueError):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be {\"csv\": \"...\"}")
    else:
        try:
            text = (await request.body()).decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("Menu import for %s rejected: body is not UTF-8", restaurant_id)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file must be UTF-8 encoded")

    def create(item: dict) -> dict:
        return create_menu_item(db, restaurant_id, MenuItemCreate.model_validate(item))

    try:
        result = await run_in_threadpool(import_menu_items, parse_menu_csv(text), create)
    except MenuImportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not result.success_count:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)

    logger.info("Menu import for %s by %s: %s", restaurant_id, user.get("uid"), result.message)
    return {
        "message": result.message,
        "successCount": result.success_count,
        "errorCount": result.error_count,
        "errors": result.errors,
        "items": result.created,
    }


@router.put("/{item_id}")
def update_item(request: Request, item_id: str, body: MenuItemCreate):
    user, restaurant_id = restaurant_route_guard(request)
    ref = menu_collection(database.get_db(), restaurant_id).document(item_id)
    try:
        ref.set({"restaurantId": restaurant_id, **body.model_dump()}, merge=True)
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating menu item {item_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update menu item"
        )


@router.patch("/{item_id}")
def toggle_availability(request: Request, item_id: str, body: AvailabilityUpdate):
    user, restaurant_id = restaurant_route_guard(request)
    ref = menu_collection(database.get_db(), restaurant_id).document(item_id)
    if not ref.get().exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu item not found")
    try:
        ref.update({"isAvailable": body.isAvailable})
        return snapshot_to_dict(ref.get())
    except Exception as e:
        logger.error(f"Error updating availability for {item_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update availability"
        )


@router.delete("/{item_id}")
def delete_item(request: Request, item_id: str):
    user, restaurant_id = restaurant_route_guard(request)
    try:
        menu_collection(database.get_db(), restaurant_id).document(item_id).delete()
        logger.info("Menu item %s deleted for %s", item_id, restaurant_id)
        return {"success": True}
    except Exception as e:
        logger.error(f"Error deleting menu item {item_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete menu item"
        )
