from __future__ import annotations

import logging
import math
import threading
import uuid
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ResourceNotFoundError, ValidationError
from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus
from app.services.scheduling.display import custom_times
from app.services.scheduling.domain import (
    DAY_GROUP_DAYS,
    SlotCatalog,
    day_group_for,
    minutes_to_time,
    normalize_day,
    parse_time_to_minutes,
)
from app.services.scheduling.loader import load_blocks, load_faculty, load_rooms, load_time_slots
from app.services.scheduling.materializer import ScheduleContext, flag_conflicts

logger = logging.getLogger(__name__)

DEFAULT_MEETING_MINUTES = 60

@dataclass
class _ScheduleLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


_locks_guard = threading.Lock()
_schedule_locks: dict[str, _ScheduleLock] = {}


@contextmanager
def schedule_lock(schedule_id: str) -> Iterator[None]:
    """Serialize read-modify-write edits to one schedule.

    The per-schedule lock is dropped once no caller holds or waits on it.
    """
    with _locks_guard:
        entry = _schedule_locks.setdefault(schedule_id, _ScheduleLock())
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                _schedule_locks.pop(schedule_id, None)


@dataclass
class FacultyRefreshResult:
    entries: list[ScheduleEntry]
    updated_count: int
    removed_count: int
    message: str


def load_schedule_context(db: Session, academic_setup_id: str) -> ScheduleContext:
    settings = get_settings()
    blocks, _ = load_blocks(db, academic_setup_id)
    return ScheduleContext(
        blocks={block.id: block for block in blocks},
        rooms={room.id: room for room in load_rooms(db)},
        faculty={item.user_id: item for item in load_faculty(db, academic_setup_id)},
        catalog=SlotCatalog(load_time_slots(db), gap_minutes=settings.contiguity_gap_minutes),
        overload_hard=settings.faculty_overload_hard,
    )


class ScheduleEditor:
    """Post-generation edits that always commit and flag conflicts instead of raising."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _get_schedule(self, schedule_id: str) -> Schedule:
        schedule = self.db.get(Schedule, schedule_id)
        if schedule is None:
            raise ResourceNotFoundError("Schedule", schedule_id)
        return schedule

    def _entries(self, schedule_id: str) -> list[ScheduleEntry]:
        return list(
            self.db.execute(
                select(ScheduleEntry)
                .where(ScheduleEntry.schedule_id == schedule_id)
                .order_by(ScheduleEntry.day, ScheduleEntry.time_slot_id, ScheduleEntry.id)
            )
            .scalars()
            .all()
        )

    @staticmethod
    def _meeting_minutes(entries: list[ScheduleEntry], context: ScheduleContext) -> int:
        """Length of one meeting: custom times, else the covered slots, else an hour."""
        first = entries[0]
        if first.custom_start_time and first.custom_end_time:
            return parse_time_to_minutes(first.custom_end_time) - parse_time_to_minutes(first.custom_start_time)
        day_slots = [
            context.catalog.get(entry.time_slot_id)
            for entry in entries
            if entry.day == first.day and entry.academic_setup_subject_id == first.academic_setup_subject_id
        ]
        day_slots = [slot for slot in day_slots if slot is not None]
        if day_slots:
            return max(slot.end for slot in day_slots) - min(slot.start for slot in day_slots)
        return DEFAULT_MEETING_MINUTES

    def propose_move(
        self,
        schedule_id: str,
        entry_id: str,
        *,
        day: str,
        time_slot_id: str,
        room_id: str,
    ) -> ScheduleEntry:
        """Move an entry's whole session and commit it, flagging any hard-constraint breach.

        Single-day and paired-day groups keep the weekly minutes: moving from
        FRI to MW halves each meeting and adds the paired day, the reverse
        doubles it and drops the pair.
        """
        with schedule_lock(schedule_id):
            schedule = self._get_schedule(schedule_id)
            entry = self.db.get(ScheduleEntry, entry_id)
            if entry is None or entry.schedule_id != schedule_id:
                raise ResourceNotFoundError("Schedule entry", entry_id)

            context = load_schedule_context(self.db, schedule.academic_setup_id)
            slot = context.catalog.get(time_slot_id)
            if slot is None:
                raise ResourceNotFoundError("Time slot", time_slot_id)
            if room_id not in context.rooms:
                raise ResourceNotFoundError("Room", room_id)
            target_day = normalize_day(day)
            if target_day not in slot.days:
                raise ValidationError(
                    f"Day {day} is not part of time slot {slot.name} ({slot.day_group})",
                    details={"day": day, "time_slot_id": time_slot_id},
                )

            all_entries = self._entries(schedule_id)
            session = [item for item in all_entries if item.session_group_id == entry.session_group_id]
            old_cells = {(item.day, item.time_slot_id) for item in session}

            old_slot = context.catalog.get(entry.time_slot_id)
            old_group = old_slot.day_group if old_slot is not None else (day_group_for(entry.day) or slot.day_group)
            weekly_minutes = self._meeting_minutes(session, context) * len(DAY_GROUP_DAYS[old_group])
            new_days = DAY_GROUP_DAYS[slot.day_group]
            minutes = math.ceil(weekly_minutes / len(new_days))
            run, contiguous = context.catalog.cover(slot.id, minutes)
            if contiguous:
                custom_start, custom_end = custom_times(run, minutes)
            else:
                # Custom times carry the full meeting length even when the run falls short.
                custom_start = minutes_to_time(run[0].start)
                custom_end = minutes_to_time(run[0].start + minutes)

            templates: dict[str, ScheduleEntry] = {}
            for item in session:
                templates.setdefault(item.academic_setup_subject_id, item)
            member_order = [entry.academic_setup_subject_id] + [
                member for member in templates if member != entry.academic_setup_subject_id
            ]
            day_order = [target_day] + [item for item in new_days if item != target_day]
            targets = [(member, target_day_, run_slot) for member in member_order for target_day_ in day_order for run_slot in run]

            reusable = {member: [item for item in session if item.academic_setup_subject_id == member] for member in templates}
            reusable[entry.academic_setup_subject_id].remove(entry)
            reusable[entry.academic_setup_subject_id].insert(0, entry)

            kept: list[ScheduleEntry] = []
            for member, target_day_, run_slot in targets:
                pool = reusable[member]
                if pool:
                    row = pool.pop(0)
                else:
                    template = templates[member]
                    row = ScheduleEntry(
                        id=str(uuid.uuid4()),
                        schedule_id=schedule_id,
                        academic_setup_subject_id=member,
                        user_id=template.user_id,
                        is_lab_session=template.is_lab_session,
                        session_group_id=template.session_group_id,
                        display_code=template.display_code,
                        parallel_display_code=template.parallel_display_code,
                    )
                    self.db.add(row)
                    all_entries.append(row)
                row.day = target_day_
                row.time_slot_id = run_slot.id
                row.room_id = room_id
                row.slots_span = len(run)
                row.custom_start_time = custom_start
                row.custom_end_time = custom_end
                kept.append(row)

            for leftovers in reusable.values():
                for row in leftovers:
                    self.db.delete(row)
                    all_entries.remove(row)

            new_cells = {(row.day, row.time_slot_id) for row in kept}
            touched = old_cells | new_cells
            affected = {row.id for row in kept} | {
                item.id for item in all_entries if (item.day, item.time_slot_id) in touched
            }
            flag_conflicts(all_entries, context, only=affected)
            self.db.commit()
            self.db.refresh(entry)
            logger.info(
                "SCHEDULE ENTRY MOVED | schedule_id=%s | entry_id=%s | day=%s | slot=%s | room=%s | conflict=%s",
                schedule_id,
                entry_id,
                target_day,
                time_slot_id,
                room_id,
                entry.has_conflict,
            )
            return entry

    def refresh_faculty(self, schedule_id: str) -> FacultyRefreshResult:
        """Re-solve instructor assignment with day, time and room held fixed."""
        with schedule_lock(schedule_id):
            schedule = self._get_schedule(schedule_id)
            context = load_schedule_context(self.db, schedule.academic_setup_id)
            entries = self._entries(schedule_id)

            sessions: dict[str, list[ScheduleEntry]] = defaultdict(list)
            for item in entries:
                sessions[item.session_group_id].append(item)

            removed_count = 0
            pinned: dict[str, str] = {}
            for session_id, rows in sessions.items():
                current = rows[0].user_id
                if current is not None and current not in context.faculty:
                    removed_count += 1
                for row in rows:
                    block = context.blocks.get(row.academic_setup_subject_id)
                    if block is not None and block.assigned_faculty_id in context.faculty:
                        pinned[session_id] = block.assigned_faculty_id
                        break

            busy: dict[tuple[str, str, str], int] = defaultdict(int)
            loads: dict[str, dict[str, int]] = defaultdict(dict)
            chosen: dict[str, str | None] = {}
            group_faculty: dict[str, str] = {}

            def group_key(rows: list[ScheduleEntry]) -> str:
                block_id = rows[0].academic_setup_subject_id
                return context.group_key.get(block_id, block_id)

            def units_of(rows: list[ScheduleEntry]) -> int:
                return max(
                    (context.blocks[row.academic_setup_subject_id].units for row in rows if row.academic_setup_subject_id in context.blocks),
                    default=0,
                )

            def commit_choice(session_id: str, faculty_id: str | None) -> None:
                rows = sessions[session_id]
                chosen[session_id] = faculty_id
                if faculty_id is None:
                    return
                for cell in {(row.day, row.time_slot_id) for row in rows}:
                    busy[(faculty_id, *cell)] += 1
                loads[faculty_id][group_key(rows)] = units_of(rows)
                group_faculty.setdefault(group_key(rows), faculty_id)

            for session_id in sorted(pinned):
                commit_choice(session_id, pinned[session_id])

            free_sessions = sorted(
                (session_id for session_id in sessions if session_id not in pinned),
                key=lambda session_id: (-len(sessions[session_id]), session_id),
            )
            for session_id in free_sessions:
                rows = sessions[session_id]
                cells = {(row.day, row.time_slot_id) for row in rows}
                current = rows[0].user_id
                candidates = ([current] if current in context.faculty else []) + [
                    faculty_id for faculty_id in context.faculty if faculty_id != current
                ]
                if not candidates:
                    commit_choice(session_id, None)
                    continue

                def cost(faculty_id: str) -> tuple:
                    profile = context.faculty[faculty_id]
                    clashes = sum(busy[(faculty_id, *cell)] for cell in cells)
                    projected = dict(loads[faculty_id])
                    projected[group_key(rows)] = units_of(rows)
                    overload = int(sum(projected.values()) > profile.max_units)
                    soft = 0
                    for day, slot_id in cells:
                        slot = context.catalog.get(slot_id)
                        period = slot.period if slot is not None else None
                        if period is not None and profile.is_day_off(day, period):
                            soft += 1
                        if profile.preferred_time_period and period and period != profile.preferred_time_period:
                            soft += 1
                    sibling = group_faculty.get(group_key(rows))
                    mismatch = int(sibling is not None and sibling != faculty_id)
                    return (clashes, overload, soft, mismatch)

                commit_choice(session_id, min(candidates, key=cost))

            updated_count = 0
            tba_count = 0
            for session_id, rows in sessions.items():
                faculty_id = chosen.get(session_id)
                if faculty_id is None:
                    tba_count += 1
                elif rows[0].user_id != faculty_id:
                    updated_count += 1
                for row in rows:
                    row.user_id = faculty_id

            flag_conflicts(entries, context)
            self.db.commit()
            message = f"Schedule updated: {updated_count} faculty assigned, {tba_count} set to TBA"
            logger.info(
                "SCHEDULE FACULTY REFRESH | schedule_id=%s | updated=%s | removed=%s | tba=%s",
                schedule_id,
                updated_count,
                removed_count,
                tba_count,
            )
            return FacultyRefreshResult(
                entries=entries,
                updated_count=updated_count,
                removed_count=removed_count,
                message=message,
            )

    def publish(self, schedule_id: str) -> Schedule:
        with schedule_lock(schedule_id):
            schedule = self._get_schedule(schedule_id)
            if schedule.status != ScheduleStatus.published:
                schedule.status = ScheduleStatus.published
                schedule.published_at = datetime.now(timezone.utc)
                self.db.commit()
                self.db.refresh(schedule)
            return schedule

    def list_entries(self, schedule_id: str) -> tuple[Schedule, list[ScheduleEntry]]:
        schedule = self._get_schedule(schedule_id)
        return schedule, self._entries(schedule_id)
