from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError
from app.models.academic_setup import AcademicSetup, AcademicSetupFaculty, AcademicSetupSubject
from app.models.course import Course, Subject
from app.models.room import Room
from app.models.time_slot import TimeSlot
from app.services.scheduling.domain import (
    DEFAULT_EXPECTED_STUDENTS,
    DEFAULT_LAB_HOURS,
    DEFAULT_LECTURE_HOURS,
    FacultyProfile,
    RoomSpec,
    SchedulingInput,
    SubjectBlock,
    TimeSlotSpec,
    normalize_day,
    normalize_day_off_time,
    parse_time_to_minutes,
)

logger = logging.getLogger(__name__)


def _enum_value(value) -> str | None:
    if value is None:
        return None
    return getattr(value, "value", value)


def load_blocks(db: Session, academic_setup_id: str) -> tuple[list[SubjectBlock], dict[str, str]]:
    rows = (
        db.execute(
            select(AcademicSetupSubject).where(
                AcademicSetupSubject.academic_setup_id == academic_setup_id,
                AcademicSetupSubject.is_active.is_(True),
            )
        )
        .scalars()
        .all()
    )
    subject_ids = {row.subject_id for row in rows}
    for row in rows:
        subject_ids.update(row.parallel_subject_ids or [])
    subjects = {
        item.id: item
        for item in db.execute(select(Subject).where(Subject.id.in_(subject_ids))).scalars().all()
    } if subject_ids else {}
    course_ids = {course_id for row in rows for course_id in (row.course_ids or [])}
    courses = {
        item.id: item
        for item in db.execute(select(Course).where(Course.id.in_(course_ids))).scalars().all()
    } if course_ids else {}

    blocks: list[SubjectBlock] = []
    for row in rows:
        subject = subjects.get(row.subject_id)
        if subject is None:
            logger.warning("SCHEDULING INPUT | setup_subject=%s | missing subject=%s", row.id, row.subject_id)
            continue
        row_course_ids = tuple(course_id for course_id in (row.course_ids or []) if course_id in courses)
        lab_hours = subject.lab_hours
        if row.needs_lab and not lab_hours:
            lab_hours = DEFAULT_LAB_HOURS
        blocks.append(
            SubjectBlock(
                id=row.id,
                subject_id=subject.id,
                subject_code=subject.code,
                subject_name=subject.name,
                course_ids=row_course_ids,
                course_codes=tuple(courses[course_id].code for course_id in row_course_ids),
                subject_is_shared=subject.course_id is None,
                year_level=row.year_level,
                block_number=row.block_number,
                expected_students=row.expected_students or DEFAULT_EXPECTED_STUDENTS,
                needs_lab=row.needs_lab,
                preferred_lecture_room_id=row.preferred_lecture_room_id,
                preferred_lab_room_id=row.preferred_lab_room_id,
                parallel_subject_ids=tuple(
                    item for item in (row.parallel_subject_ids or []) if item != subject.id
                ),
                assigned_faculty_id=row.assigned_faculty_id,
                units=subject.units,
                lecture_hours=subject.lecture_hours or DEFAULT_LECTURE_HOURS,
                lab_hours=lab_hours if row.needs_lab else 0,
            )
        )
    blocks.sort(key=lambda item: (item.year_level or 0, item.subject_code, item.block_number, item.id))
    subject_codes = {subject_id: subject.code for subject_id, subject in subjects.items()}
    return blocks, subject_codes


def load_faculty(db: Session, academic_setup_id: str) -> list[FacultyProfile]:
    rows = (
        db.execute(
            select(AcademicSetupFaculty)
            .where(
                AcademicSetupFaculty.academic_setup_id == academic_setup_id,
                AcademicSetupFaculty.is_active.is_(True),
            )
            .order_by(AcademicSetupFaculty.display_name, AcademicSetupFaculty.user_id)
        )
        .scalars()
        .all()
    )
    return [
        FacultyProfile(
            user_id=row.user_id,
            name=row.display_name,
            max_units=row.max_units,
            preferred_day_off=normalize_day(row.preferred_day_off) if row.preferred_day_off else None,
            preferred_day_off_time=normalize_day_off_time(_enum_value(row.preferred_day_off_time)),
            preferred_time_period=_enum_value(row.preferred_time_period),
        )
        for row in rows
    ]


def load_rooms(db: Session) -> list[RoomSpec]:
    rows = db.execute(select(Room).where(Room.is_active.is_(True)).order_by(Room.name)).scalars().all()
    return [
        RoomSpec(
            id=row.id,
            name=row.name,
            room_type=_enum_value(row.room_type),
            capacity=row.capacity,
            building_id=row.building_id,
            priority=row.priority,
        )
        for row in rows
    ]


def load_time_slots(db: Session) -> list[TimeSlotSpec]:
    rows = db.execute(select(TimeSlot).where(TimeSlot.is_active.is_(True))).scalars().all()
    return [
        TimeSlotSpec(
            id=row.id,
            day_group=_enum_value(row.day_group),
            name=row.name,
            start=parse_time_to_minutes(row.start_time),
            end=parse_time_to_minutes(row.end_time),
            priority=row.priority,
        )
        for row in rows
    ]


def load_scheduling_input(
    db: Session,
    academic_setup_id: str,
    included_days: Sequence[str],
    *,
    contiguity_gap_minutes: int = 15,
) -> SchedulingInput:
    setup = db.get(AcademicSetup, academic_setup_id)
    if setup is None:
        raise ResourceNotFoundError("Academic setup", academic_setup_id)

    blocks, subject_codes = load_blocks(db, academic_setup_id)
    data = SchedulingInput(
        academic_setup_id=academic_setup_id,
        blocks=tuple(blocks),
        faculty=tuple(load_faculty(db, academic_setup_id)),
        rooms=tuple(load_rooms(db)),
        time_slots=tuple(load_time_slots(db)),
        included_days=tuple(included_days),
        subject_codes=subject_codes,
        contiguity_gap_minutes=contiguity_gap_minutes,
    )
    logger.info(
        "SCHEDULING INPUT | setup_id=%s | blocks=%s | faculty=%s | rooms=%s | time_slots=%s | days=%s",
        academic_setup_id,
        len(data.blocks),
        len(data.faculty),
        len(data.rooms),
        len(data.time_slots),
        ",".join(data.included_days),
    )
    return data
