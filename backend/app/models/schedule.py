from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Float, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class ScheduleStatus(str, Enum):
    draft = "draft"
    published = "published"


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SAEnum(ScheduleStatus, name="schedule_status"),
        nullable=False,
        default=ScheduleStatus.draft,
        index=True,
    )
    fitness_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    generation: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generations_run: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generation_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ScheduleEntry(Base):
    __tablename__ = "schedule_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    academic_setup_subject_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    day: Mapped[str] = mapped_column(String(20), nullable=False)
    time_slot_id: Mapped[str] = mapped_column(String(36), nullable=False)
    room_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    is_lab_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    session_group_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    slots_span: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    custom_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    custom_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    display_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    parallel_display_code: Mapped[str | None] = mapped_column(String(300), nullable=True)
    has_conflict: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    conflict_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
