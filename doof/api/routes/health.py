from datetime import datetime, timezone

from fastapi import APIRouter

from doof.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
def read_health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status")
def read_status() -> dict:
    """Pipeline limits the UI needs to render the bulk-add form."""
    settings = get_settings()
    return {
        "ready": bool(settings.places_base_url and settings.list_api_base_url),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "maxItemsPerList": settings.bulk_add_max_items_per_list,
        "fieldOrder": settings.bulk_add_field_order,
        "batchStore": "redis" if settings.redis_url else "memory",
    }
