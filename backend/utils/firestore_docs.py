"""Helpers for turning Firestore snapshots into JSON-friendly dicts."""
from fastapi.encoders import jsonable_encoder
from google.cloud.firestore_v1 import DocumentReference, GeoPoint
from typing import Any, Dict, Iterable, List, Optional


def snapshot_to_dict(snapshot) -> Optional[Dict[str, Any]]:
    """`{"id": ..., **fields}` for an existing document, else None."""
    if snapshot is None or not snapshot.exists:
        return None
    return {"id": snapshot.id, **(snapshot.to_dict() or {})}


def snapshots_to_list(snapshots: Iterable) -> List[Dict[str, Any]]:
    items = []
    for snapshot in snapshots:
        item = snapshot_to_dict(snapshot)
        if item is not None:
            items.append(item)
    return items


def to_jsonable(value: Any) -> Any:
    """jsonable_encoder that also understands Firestore value types."""
    return jsonable_encoder(
        value,
        custom_encoder={
            DocumentReference: lambda ref: ref.path,
            GeoPoint: lambda point: {"latitude": point.latitude, "longitude": point.longitude},
        },
    )
