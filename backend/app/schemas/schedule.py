from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.models.schedule import ScheduleStatus
from app.services.scheduling.domain import WEEKDAY_ORDER, normalize_day


class ScheduleEntryOut(BaseModel):
    id: str
    schedule_id: str
    academic_setup_subject_id: str
    day: str
    time_slot_id: str
    room_id: str
    user_id: str | None
    is_lab_session: bool
    session_group_id: str
    slots_span: int
    custom_start_time: str | None = None
    custom_end_time: str | None = None
    display_code: str
    parallel_display_code: str | None = None
    has_conflict: bool
    conflict_reason: str | None = None

    model_config = {"from_attributes": True}


class ScheduleSummaryOut(BaseModel):
    id: str
    academic_setup_id: str
    name: str
    status: ScheduleStatus
    fitness_score: float | None
    generation: int | None
    generations_run: int | None
    generation_metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = None
    published_at: datetime | None = None

    model_config = {"from_attributes": True}


class ScheduleOut(ScheduleSummaryOut):
    entries: list[ScheduleEntryOut] = Field(default_factory=list)
    conflict_count: int = 0


class RepositionEntryRequest(BaseModel):
    day: str = Field(min_length=1, max_length=20)
    time_slot_id: str = Field(min_length=1, max_length=36)
    room_id: str = Field(min_length=1, max_length=36)

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        day = normalize_day(value)
        if day not in WEEKDAY_ORDER:
            raise ValueError("Invalid day value")
        return day


class FacultyRefreshOut(BaseModel):
    message: str
    updated_count: int
    removed_count: int
    entries: list[ScheduleEntryOut]
