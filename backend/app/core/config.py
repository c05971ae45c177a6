from functools import lru_cache
import json
import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

DAY_GROUP_VALUES = ("MW", "TTH", "FRI", "SAT", "SUN")


class Settings(BaseSettings):
    # Resolve to backend/.env so `uvicorn --app-dir backend` works from any cwd.
    model_config = SettingsConfigDict(env_file=str(BACKEND_ENV_FILE), env_file_encoding="utf-8")

    project_name: str = "Timetabler API"
    api_prefix: str = "/api"

    database_url: str = "sqlite:///./timetabler.db"

    # "background" hands runs to a worker pool; "inline" finishes inside the request.
    generation_mode: Literal["background", "inline"] = "background"
    max_concurrent_jobs: int = Field(default=2, ge=1, le=32)
    evaluation_workers: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    parallel_evaluation_threshold: int = Field(default=64, ge=1)

    job_retention_seconds: int = Field(default=600, ge=1)
    job_unobserved_retention_seconds: int = Field(default=3600, ge=1)
    job_active_ttl_seconds: int = Field(default=6 * 3600, ge=1)

    max_repair_passes: int = Field(default=20, ge=1, le=500)
    contiguity_gap_minutes: int = Field(default=15, ge=0, le=120)
    faculty_overload_hard: bool = False
    default_included_days: list[str] = ["MW", "TTH", "FRI"]

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @field_validator("cors_origins", "default_included_days", mode="before")
    @classmethod
    def split_list_values(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("default_included_days")
    @classmethod
    def validate_default_days(cls, value: list[str]) -> list[str]:
        unknown = [item for item in value if item not in DAY_GROUP_VALUES]
        if unknown:
            raise ValueError(f"Unknown day groups: {', '.join(unknown)}")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
