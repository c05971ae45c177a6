from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus
from app.services.scheduling.constraints import (
    Booking,
    ClashIndex,
    contiguity_reason,
    overload_reason,
    room_violations,
)
from app.services.scheduling.controller import EvolutionResult
from app.services.scheduling.display import custom_times, display_code, parallel_display_code
from app.services.scheduling.domain import (
    DAY_GROUP_DAYS,
    FacultyProfile,
    RoomSpec,
    SchedulingProblem,
    SlotCatalog,
    SubjectBlock,
    group_parallel_blocks,
    parse_time_to_minutes,
)

logger = logging.getLogger(__name__)


@dataclass
class ScheduleContext:
    """Static data needed to check materialized entries against hard constraints."""

    blocks: dict[str, SubjectBlock]
    rooms: dict[str, RoomSpec]
    faculty: dict[str, FacultyProfile]
    catalog: SlotCatalog
    overload_hard: bool = False
    group_key: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.group_key:
            for group in group_parallel_blocks(self.blocks.values()):
                for block in group:
                    self.group_key[block.id] = group[0].id

    @classmethod
    def from_problem(cls, problem: SchedulingProblem, *, overload_hard: bool = False) -> "ScheduleContext":
        return cls(
            blocks=dict(problem.blocks),
            rooms=dict(problem.rooms),
            faculty=dict(problem.faculty),
            catalog=SlotCatalog(problem.input.time_slots, gap_minutes=problem.input.contiguity_gap_minutes),
            overload_hard=overload_hard,
            group_key={block.id: group[0].id for group in problem.parallel_groups for block in group},
        )

    def faculty_label(self, user_id: str | None) -> str:
        if user_id is None:
            return "TBA"
        profile = self.faculty.get(user_id)
        return profile.name if profile is not None else "TBA"


def _session_problems(entries: Sequence[ScheduleEntry], context: ScheduleContext) -> list[str]:
    """Room and contiguity problems shared by every entry of one session group."""
    reasons: list[str] = []
    blocks = {entry.academic_setup_subject_id: context.blocks.get(entry.academic_setup_subject_id) for entry in entries}
    student_count = sum(block.expected_students for block in blocks.values() if block is not None)
    is_lab = entries[0].is_lab_session
    for room_id in sorted({entry.room_id for entry in entries}):
        for _kind, reason in room_violations(context.rooms.get(room_id), is_lab=is_lab, student_count=student_count):
            reasons.append(reason)

    by_day: dict[tuple[str, str], set[str]] = defaultdict(set)
    for entry in entries:
        by_day[(entry.academic_setup_subject_id, entry.day)].add(entry.time_slot_id)
    for (_block_id, day), slot_ids in by_day.items():
        slots = [context.catalog.get(slot_id) for slot_id in slot_ids]
        if any(slot is None or day not in slot.days for slot in slots):
            reasons.append(f"Time slot is not scheduled on {day}")
            continue
        slots.sort(key=lambda item: item.start)
        group_slots = context.catalog.slots_for(slots[0].day_group)
        first = context.catalog.position(slots[0].id)
        expected = group_slots[first : first + len(slots)]
        gaps_ok = all(
            later.start - earlier.end <= context.catalog.gap_minutes for earlier, later in zip(slots, slots[1:])
        )
        if tuple(slots) != tuple(expected) or not gaps_ok or len(slots) != entries[0].slots_span:
            reasons.append(contiguity_reason())
            continue
        custom_end = entries[0].custom_end_time
        if custom_end and parse_time_to_minutes(custom_end) > slots[-1].end:
            reasons.append(contiguity_reason())
    return list(dict.fromkeys(reasons))


def flag_conflicts(
    entries: Sequence[ScheduleEntry],
    context: ScheduleContext,
    *,
    only: Iterable[str] | None = None,
) -> int:
    """Recompute ``has_conflict``/``conflict_reason`` on entries.

    All entries feed the clash index; with ``only`` given, flags are rewritten
    just for those entry ids. Returns the number of flagged entries among the
    rewritten ones.
    """
    targets = set(only) if only is not None else None
    bookings: dict[str, Booking] = {}
    index = ClashIndex()
    sessions: dict[str, list[ScheduleEntry]] = defaultdict(list)
    for entry in entries:
        block = context.blocks.get(entry.academic_setup_subject_id)
        booking = Booking(
            owner=entry.session_group_id,
            day=entry.day,
            time_slot_id=entry.time_slot_id,
            room_id=entry.room_id,
            faculty_id=entry.user_id,
            section_keys=block.section_keys if block is not None else frozenset(),
            label=entry.parallel_display_code or entry.display_code,
            faculty_label=context.faculty_label(entry.user_id),
        )
        bookings[entry.id] = booking
        index.add(booking)
        sessions[entry.session_group_id].append(entry)

    overloaded: dict[str, str] = {}
    if context.overload_hard:
        loads: dict[str, dict[str, int]] = defaultdict(dict)
        for entry in entries:
            block = context.blocks.get(entry.academic_setup_subject_id)
            if entry.user_id is None or block is None:
                continue
            key = context.group_key.get(block.id, block.id)
            loads[entry.user_id][key] = max(loads[entry.user_id].get(key, 0), block.units)
        for user_id, per_group in loads.items():
            profile = context.faculty.get(user_id)
            total = sum(per_group.values())
            if profile is not None and total > profile.max_units:
                overloaded[user_id] = overload_reason(total, profile.max_units)

    session_reasons: dict[str, list[str]] = {}
    flagged = 0
    for entry in entries:
        if targets is not None and entry.id not in targets:
            continue
        if entry.session_group_id not in session_reasons:
            session_reasons[entry.session_group_id] = _session_problems(sessions[entry.session_group_id], context)
        reasons = index.reasons_for(bookings[entry.id]) + session_reasons[entry.session_group_id]
        if entry.user_id in overloaded:
            reasons.append(overloaded[entry.user_id])
        entry.has_conflict = bool(reasons)
        entry.conflict_reason = "; ".join(reasons) if reasons else None
        flagged += entry.has_conflict
    return flagged


class ScheduleMaterializer:
    """Turns the best chromosome of a run into persisted schedule rows."""

    def __init__(self, db: Session, problem: SchedulingProblem, *, overload_hard: bool = False) -> None:
        self.db = db
        self.problem = problem
        self.context = ScheduleContext.from_problem(problem, overload_hard=overload_hard)

    def build_entries(self, schedule_id: str, result: EvolutionResult) -> list[ScheduleEntry]:
        problem = self.problem
        entries: list[ScheduleEntry] = []
        for request, placement in zip(problem.requests, result.chromosome):
            group = problem.group_by_block[request.leader_id]
            members = [block for block in group if not request.is_lab or block.needs_lab]
            slots, _ = problem.meeting_slots(request, placement)
            minutes = problem.catalog.meeting_minutes(request.weekly_minutes, placement.day_group)
            custom_start, custom_end = custom_times(slots, minutes)
            shared_code = parallel_display_code(group, problem.subject_codes)
            session_group_id = str(uuid.uuid4())
            for block in members:
                for day in DAY_GROUP_DAYS[placement.day_group]:
                    for slot in slots:
                        entries.append(
                            ScheduleEntry(
                                id=str(uuid.uuid4()),
                                schedule_id=schedule_id,
                                academic_setup_subject_id=block.id,
                                day=day,
                                time_slot_id=slot.id,
                                room_id=placement.room_id,
                                user_id=placement.faculty_id,
                                is_lab_session=request.is_lab,
                                session_group_id=session_group_id,
                                slots_span=len(slots),
                                custom_start_time=custom_start,
                                custom_end_time=custom_end,
                                display_code=display_code(block),
                                parallel_display_code=shared_code,
                                has_conflict=False,
                            )
                        )
        return entries

    def materialize(
        self,
        result: EvolutionResult,
        *,
        name: str,
        created_by_id: str | None = None,
        parameters: dict | None = None,
    ) -> Schedule:
        schedule = Schedule(
            id=str(uuid.uuid4()),
            academic_setup_id=self.problem.input.academic_setup_id,
            name=name,
            status=ScheduleStatus.draft,
            fitness_score=result.evaluation.fitness,
            generation=result.best_generation,
            generations_run=result.generations_run,
            generation_metadata={
                **(parameters or {}),
                "included_days": list(self.problem.input.included_days),
                "hard_conflicts": result.evaluation.hard_conflicts,
                "converged": result.converged,
                "elapsed_seconds": result.elapsed_seconds,
                "generation_stats": [stat.as_dict() for stat in result.history[-10:]],
            },
            created_by_id=created_by_id,
        )
        entries = self.build_entries(schedule.id, result)
        flagged = flag_conflicts(entries, self.context)
        self.db.add(schedule)
        self.db.add_all(entries)
        self.db.commit()
        self.db.refresh(schedule)
        logger.info(
            "SCHEDULE MATERIALIZED | schedule_id=%s | entries=%s | flagged=%s | fitness=%.4f",
            schedule.id,
            len(entries),
            flagged,
            result.evaluation.fitness,
        )
        return schedule
