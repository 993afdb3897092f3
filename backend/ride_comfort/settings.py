from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_osrm_base_url() -> str:
    # In docker-compose, OSRM is reachable by service name "osrm".
    return "http://osrm:5000" if _running_in_docker() else "http://localhost:5000"


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping tunables out of code."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default="./out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, ge=1, le=65_535, alias="API_PORT")

    # External collaborators
    osrm_base_url: str = Field(default_factory=_default_osrm_base_url, alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="cycling", alias="OSRM_PROFILE")
    elevation_base_url: str = Field(default="https://api.open-elevation.com", alias="ELEVATION_BASE_URL")
    geocoder_base_url: str = Field(default="https://nominatim.openstreetmap.org", alias="GEOCODER_BASE_URL")
    provider_timeout_s: float = Field(default=15.0, ge=1.0, le=120.0, alias="PROVIDER_TIMEOUT_S")
    provider_max_retries: int = Field(default=3, ge=1, le=10, alias="PROVIDER_MAX_RETRIES")

    # Geometry / matching
    projector_vertex_cap: int = Field(default=5_000, ge=2, alias="PROJECTOR_VERTEX_CAP")
    matcher_max_lateral_m: float = Field(default=40.0, gt=0.0, alias="MATCHER_MAX_LATERAL_M")
    matcher_window_steps: int = Field(default=2, ge=0, le=50, alias="MATCHER_WINDOW_STEPS")

    # Segment statistics
    segment_store_capacity: int = Field(default=512, ge=1, alias="SEGMENT_STORE_CAPACITY")
    segment_store_blend_alpha: float = Field(default=0.6, gt=0.0, le=1.0, alias="SEGMENT_STORE_BLEND_ALPHA")
    segment_store_freshness_horizon_s: float = Field(
        default=1_800.0,
        gt=0.0,
        alias="SEGMENT_STORE_FRESHNESS_HORIZON_S",
    )

    # Motion roughness
    smoothness_window_size: int = Field(default=64, ge=1, le=10_000, alias="SMOOTHNESS_WINDOW_SIZE")
    smoothness_alpha: float = Field(default=0.18, gt=0.0, le=1.0, alias="SMOOTHNESS_ALPHA")
    smoothness_max_rate_hz: float = Field(default=8.0, gt=0.0, le=200.0, alias="SMOOTHNESS_MAX_RATE_HZ")
    smoothness_rms_ceiling: float = Field(default=3.5, gt=0.0, alias="SMOOTHNESS_RMS_CEILING")
    smoothness_spike_sigma: float = Field(default=3.0, ge=0.0, alias="SMOOTHNESS_SPIKE_SIGMA")
    baseline_roughness_rms: float = Field(default=0.8, ge=0.0, alias="BASELINE_ROUGHNESS_RMS")

    # Search lookups
    lookup_cache_max_entries: int = Field(default=256, ge=1, alias="LOOKUP_CACHE_MAX_ENTRIES")

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        self.osrm_base_url = self.osrm_base_url.rstrip("/")
        self.elevation_base_url = self.elevation_base_url.rstrip("/")
        self.geocoder_base_url = self.geocoder_base_url.rstrip("/")
        self.osrm_profile = (self.osrm_profile or "cycling").strip().lower()
        return self


settings = Settings()
