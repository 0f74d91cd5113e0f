"""Application configuration and settings management."""

from pathlib import Path
from typing import Annotated, Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="PLANT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Plant Watering Dispatch API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level applied on startup.")

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )
    supabase_schema: str = Field(default="public", description="Postgres schema holding the dispatch tables.")
    distance_page_size: int = Field(
        default=1000,
        ge=1,
        description="Rows fetched per page when loading distance pairs (Supabase caps single queries).",
    )

    # Escalation
    confirmation_timeout_seconds: float = Field(
        default=30 * 60,
        gt=0,
        description="Delay after a notification before the task escalates to the next candidate.",
    )
    display_utc_offset_hours: float = Field(
        default=0.0,
        description="Offset added to UTC when writing last/next watering timestamps.",
    )

    # Desk.ly booking system
    deskly_base_url: str = Field(default="https://app.desk.ly/en/api/v2")
    deskly_api_key: Optional[str] = Field(default=None)
    deskly_location_id: Optional[str] = Field(default=None, description="Desk.ly location (building) id.")
    deskly_floor_ids: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Desk.ly floor ids queried for bookings on every assignment run.",
    )
    deskly_floor_room_ids: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Desk.ly room ids per floor, in floor order (first entry is floor 1).",
    )
    deskly_page_limit: int = Field(default=50, ge=1)

    # Slack
    slack_base_url: str = Field(default="https://slack.com/api")
    slack_bot_token: Optional[str] = Field(default=None)
    slack_signing_secret: Optional[str] = Field(
        default=None,
        description="Signing secret used to verify requests sent to the interactivity webhook.",
    )
    slack_signature_max_age_seconds: int = Field(default=5 * 60, ge=1)

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    http_max_retries: int = Field(default=3, ge=0)
    http_backoff_seconds: float = Field(default=1.0, ge=0.0)

    location_seed_file: Optional[Path] = Field(
        default=None,
        description="Optional .xlsx workbook used to seed the location table when it is empty.",
    )
    frontend_allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("location_seed_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Optional[Path]:
        if value is None or value == "":
            return None
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "deskly_floor_ids", "deskly_floor_room_ids", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
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
