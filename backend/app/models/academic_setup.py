from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class DayOffTime(str, Enum):
    morning = "morning"
    afternoon = "afternoon"
    wholeday = "wholeday"


class TimePeriod(str, Enum):
    morning = "morning"
    afternoon = "afternoon"


class AcademicSetup(Base):
    __tablename__ = "academic_setups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    semester: Mapped[str] = mapped_column(String(20), nullable=False, default="1st")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class AcademicSetupSubject(Base):
    __tablename__ = "academic_setup_subjects"
    __table_args__ = (
        UniqueConstraint(
            "academic_setup_id",
            "subject_id",
            "year_level",
            "block_number",
            "course_key",
            name="uq_academic_setup_subjects_block",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # Empty for general-education blocks; several ids for fused blocks.
    course_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Sorted, comma-joined course_ids so the unique constraint can see the course set.
    course_key: Mapped[str] = mapped_column(String(400), nullable=False, default="")
    year_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    block_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expected_students: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    needs_lab: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preferred_lecture_room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    preferred_lab_room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    parallel_subject_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    assigned_faculty_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AcademicSetupFaculty(Base):
    __tablename__ = "academic_setup_faculty"
    __table_args__ = (
        UniqueConstraint("academic_setup_id", "user_id", name="uq_academic_setup_faculty_user"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    academic_setup_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    max_units: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    preferred_day_off: Mapped[str | None] = mapped_column(String(20), nullable=True)
    preferred_day_off_time: Mapped[DayOffTime] = mapped_column(
        SAEnum(DayOffTime, name="day_off_time"),
        nullable=False,
        default=DayOffTime.wholeday,
    )
    preferred_time_period: Mapped[TimePeriod | None] = mapped_column(
        SAEnum(TimePeriod, name="time_period"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
