"""Runtime settings read from the environment (and an optional .env file)."""
from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file if present
load_dotenv()


class Settings(BaseModel):
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    google_api_key: Optional[str] = None

    # Route-level scalars used by candidate selection.
    distance_weight: float = 200.0
    preference_weight: float = 1.0
    sharpening_exponent: float = 1.5

    ranking_strategy: Literal["concurrent", "serial"] = "concurrent"
    ranking_concurrency: int = Field(default=5, ge=1)
    serial_min_delay: float = Field(default=0.05, ge=0.0)
    serial_max_delay: float = Field(default=0.25, ge=0.0)

    retry_max_attempts: int = Field(default=6, ge=0)
    retry_base_seconds: float = Field(default=0.3, ge=0.0)
    retry_cap_seconds: float = Field(default=8.0, ge=0.0)

    places_per_search: int = Field(default=5, ge=1)
    http_timeout: float = Field(default=10.0, gt=0.0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``ROUTEGEN_*`` variables plus the provider keys."""
        raw = {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "model": os.getenv("ROUTEGEN_MODEL"),
            "google_api_key": os.getenv("GOOGLE_API_KEY"),
            "distance_weight": os.getenv("ROUTEGEN_DISTANCE_WEIGHT"),
            "preference_weight": os.getenv("ROUTEGEN_PREFERENCE_WEIGHT"),
            "sharpening_exponent": os.getenv("ROUTEGEN_SHARPENING_EXPONENT"),
            "ranking_strategy": os.getenv("ROUTEGEN_RANKING_STRATEGY"),
            "ranking_concurrency": os.getenv("ROUTEGEN_RANKING_CONCURRENCY"),
            "retry_max_attempts": os.getenv("ROUTEGEN_RETRY_MAX_ATTEMPTS"),
            "retry_base_seconds": os.getenv("ROUTEGEN_RETRY_BASE_SECONDS"),
            "retry_cap_seconds": os.getenv("ROUTEGEN_RETRY_CAP_SECONDS"),
            "places_per_search": os.getenv("ROUTEGEN_PLACES_PER_SEARCH"),
        }
        # Unset variables fall back to the model defaults.
        return cls.model_validate({k: v for k, v in raw.items() if v not in (None, "")})
