import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from doof.api.router import get_api_router
from doof.core.config import get_settings
from doof.middleware.request_id import RequestIdLogFilter, RequestIdMiddleware
from doof.services.list_client import get_list_client
from doof.services.neighborhood_client import get_neighborhood_client
from doof.services.places_client import get_places_client


logger = logging.getLogger(__name__)
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s batch=%(batch_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIdLogFilter())
logging.getLogger("doof").setLevel(settings.log_level)

# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close pooled HTTP clients on shutdown."""
    logger.info("%s started", settings.app_name)

    yield

    await get_places_client().close()
    await get_list_client().close()
    neighborhoods = get_neighborhood_client()
    if neighborhoods is not None:
        await neighborhoods.close()
    logger.info("HTTP clients closed")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite frontend
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(get_api_router())


@app.get("/")
def root() -> dict:
    return {"message": "Doof bulk add backend", "api_prefix": settings.api_prefix}
