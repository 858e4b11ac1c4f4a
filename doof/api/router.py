from fastapi import APIRouter

from doof.api.routes import bulk_add, health
from doof.core.config import get_settings


def get_api_router() -> APIRouter:
    settings = get_settings()
    router = APIRouter(prefix=settings.api_prefix)
    router.include_router(health.router)
    router.include_router(bulk_add.router)
    return router
