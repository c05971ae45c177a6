from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.schedule import Schedule, ScheduleEntry
from app.schemas.schedule import (
    FacultyRefreshOut,
    RepositionEntryRequest,
    ScheduleEntryOut,
    ScheduleOut,
    ScheduleSummaryOut,
)
from app.services.schedule_editing import ScheduleEditor

router = APIRouter()


def _schedule_out(schedule: Schedule, entries: list[ScheduleEntry]) -> ScheduleOut:
    summary = ScheduleSummaryOut.model_validate(schedule)
    return ScheduleOut(
        **summary.model_dump(),
        entries=[ScheduleEntryOut.model_validate(entry) for entry in entries],
        conflict_count=sum(1 for entry in entries if entry.has_conflict),
    )


@router.get("/", response_model=list[ScheduleSummaryOut])
def list_schedules(academic_setup_id: str | None = None, db: Session = Depends(get_db)) -> list[ScheduleSummaryOut]:
    query = select(Schedule).order_by(Schedule.created_at.desc())
    if academic_setup_id:
        query = query.where(Schedule.academic_setup_id == academic_setup_id)
    return list(db.execute(query).scalars())


@router.get("/{schedule_id}", response_model=ScheduleOut)
def get_schedule(schedule_id: str, db: Session = Depends(get_db)) -> ScheduleOut:
    schedule, entries = ScheduleEditor(db).list_entries(schedule_id)
    return _schedule_out(schedule, entries)


@router.patch("/{schedule_id}/entries/{entry_id}", response_model=ScheduleEntryOut)
def reposition_entry(
    schedule_id: str,
    entry_id: str,
    payload: RepositionEntryRequest,
    db: Session = Depends(get_db),
) -> ScheduleEntryOut:
    return ScheduleEditor(db).propose_move(
        schedule_id,
        entry_id,
        day=payload.day,
        time_slot_id=payload.time_slot_id,
        room_id=payload.room_id,
    )


@router.post("/{schedule_id}/refresh-faculty", response_model=FacultyRefreshOut)
def refresh_faculty(schedule_id: str, db: Session = Depends(get_db)) -> FacultyRefreshOut:
    result = ScheduleEditor(db).refresh_faculty(schedule_id)
    return FacultyRefreshOut(
        message=result.message,
        updated_count=result.updated_count,
        removed_count=result.removed_count,
        entries=[ScheduleEntryOut.model_validate(entry) for entry in result.entries],
    )


@router.post("/{schedule_id}/publish", response_model=ScheduleOut)
def publish_schedule(schedule_id: str, db: Session = Depends(get_db)) -> ScheduleOut:
    editor = ScheduleEditor(db)
    editor.publish(schedule_id)
    schedule, entries = editor.list_entries(schedule_id)
    return _schedule_out(schedule, entries)
