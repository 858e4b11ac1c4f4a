from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_FIELD_ORDER = ["name", "description_hint", "location_hint"]


class Settings(BaseSettings):
    """Application settings shared by the API layer and the bulk-add pipeline."""

    api_prefix: str = "/api"
    app_name: str = "Doof Bulk Add Backend"
    log_level: str = "INFO"

    # Places proxy (autocomplete + details)
    places_base_url: str = "http://localhost:5001/api"
    places_timeout_seconds: float = 10.0

    # List store
    list_api_base_url: str = "http://localhost:5001/api"
    list_api_token: Optional[str] = None

    # Neighborhood lookup by zipcode; empty disables it
    neighborhood_api_base_url: Optional[str] = "http://localhost:5001/api"

    # Bulk add pipeline
    bulk_add_max_retries: int = 3
    bulk_add_retry_delay_ms: int = 1000
    bulk_add_max_concurrent_resolutions: int = 5
    bulk_add_max_items_per_list: int = 50
    bulk_add_field_order: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_FIELD_ORDER))

    # Paused batch storage
    batch_ttl_minutes: int = 30
    redis_url: Optional[str] = None
    redis_batch_prefix: str = "doof-bulk-add-batch"
    batch_lock_timeout_seconds: float = 120.0

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    @field_validator("bulk_add_field_order", mode="before")
    @classmethod
    def split_field_order(cls, value):
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
            return items or list(DEFAULT_FIELD_ORDER)
        if value is None:
            return list(DEFAULT_FIELD_ORDER)
        return value

    @field_validator("bulk_add_field_order")
    @classmethod
    def check_field_order(cls, value: List[str]) -> List[str]:
        if sorted(value) != sorted(DEFAULT_FIELD_ORDER):
            raise ValueError(
                f"bulk_add_field_order must be a permutation of {', '.join(DEFAULT_FIELD_ORDER)}"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
