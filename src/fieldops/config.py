"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDOPS_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Collection Routing API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for exported route runs.")
    store_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        description="Persistence backend for tasks, collectors and routes.",
    )
    average_speed_kmh: float = Field(
        default=30.0,
        gt=0.0,
        description="Average travel speed used for route duration estimates.",
    )
    dwell_minutes: float = Field(
        default=10.0,
        ge=0.0,
        description="Flat time spent at each stop when estimating route duration.",
    )
    default_start_address: str = Field(default="نقطة البداية")
    default_near_radius_m: float = Field(default=2000.0, gt=0.0)
    persist_route_exports: bool = Field(
        default=False,
        description="Write summary/CSV/GeoJSON exports for every optimized route.",
    )
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # External invoicing service. When unset, invoices are read from the store.
    invoice_api_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the invoicing service (e.g., http://billing:8080/api).",
    )
    invoice_api_timeout_seconds: float = Field(default=10.0, gt=0.0)
    invoice_api_max_retries: int = Field(default=3, ge=0)
    invoice_api_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @property
    def meters_per_minute(self) -> float:
        return self.average_speed_kmh * 1000.0 / 60.0

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
