from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

LECTURE = "lecture"
LAB = "lab"

DAY_GROUP_DAYS: dict[str, tuple[str, ...]] = {
    "MW": ("monday", "wednesday"),
    "TTH": ("tuesday", "thursday"),
    "FRI": ("friday",),
    "SAT": ("saturday",),
    "SUN": ("sunday",),
}
DAY_GROUP_ORDER = ("MW", "TTH", "FRI", "SAT", "SUN")
WEEKDAY_ORDER = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

LAB_ROOM_TYPES = frozenset({"laboratory", "hybrid"})
LECTURE_ROOM_TYPES = frozenset({"lecture", "hybrid"})

NOON_MINUTES = 12 * 60
DEFAULT_LECTURE_HOURS = 2
DEFAULT_LAB_HOURS = 3
DEFAULT_EXPECTED_STUDENTS = 40


def parse_time_to_minutes(value: str) -> int:
    # Accept "HH:MM" as well as database values carrying seconds.
    parts = value.strip().split(":")
    return int(parts[0]) * 60 + int(parts[1])


def minutes_to_time(value: int) -> str:
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}"


def normalize_day(value: str) -> str:
    return value.strip().lower()


def day_group_for(day: str) -> str | None:
    normalized = normalize_day(day)
    for group, days in DAY_GROUP_DAYS.items():
        if normalized in days:
            return group
    return None


def paired_day(day: str) -> str | None:
    group = day_group_for(day)
    if group is None:
        return None
    days = DAY_GROUP_DAYS[group]
    if len(days) < 2:
        return None
    return days[1] if days[0] == normalize_day(day) else days[0]


def normalize_day_off_time(value: str | None) -> str:
    normalized = (value or "").strip().lower().replace(" ", "").replace("_", "")
    if normalized in {"morning", "afternoon"}:
        return normalized
    return "wholeday"


def period_for_minutes(start_minutes: int) -> str:
    return "morning" if start_minutes < NOON_MINUTES else "afternoon"


@dataclass(frozen=True)
class TimeSlotSpec:
    id: str
    day_group: str
    name: str
    start: int
    end: int
    priority: int = 0

    @property
    def days(self) -> tuple[str, ...]:
        return DAY_GROUP_DAYS[self.day_group]

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def period(self) -> str:
        return period_for_minutes(self.start)


@dataclass(frozen=True)
class RoomSpec:
    id: str
    name: str
    room_type: str
    capacity: int
    building_id: str | None = None
    priority: int = 0

    def supports(self, is_lab: bool) -> bool:
        allowed = LAB_ROOM_TYPES if is_lab else LECTURE_ROOM_TYPES
        return self.room_type in allowed


@dataclass(frozen=True)
class FacultyProfile:
    user_id: str
    name: str
    max_units: int
    preferred_day_off: str | None = None
    preferred_day_off_time: str = "wholeday"
    preferred_time_period: str | None = None

    def is_day_off(self, day: str, period: str) -> bool:
        if not self.preferred_day_off or normalize_day(self.preferred_day_off) != day:
            return False
        if self.preferred_day_off_time == "wholeday":
            return True
        return self.preferred_day_off_time == period


@dataclass(frozen=True)
class SubjectBlock:
    id: str
    subject_id: str
    subject_code: str
    subject_name: str = ""
    course_ids: tuple[str, ...] = ()
    course_codes: tuple[str, ...] = ()
    subject_is_shared: bool = False
    year_level: int | None = None
    block_number: int = 1
    expected_students: int = DEFAULT_EXPECTED_STUDENTS
    needs_lab: bool = False
    preferred_lecture_room_id: str | None = None
    preferred_lab_room_id: str | None = None
    parallel_subject_ids: tuple[str, ...] = ()
    assigned_faculty_id: str | None = None
    units: int = 3
    lecture_hours: int = DEFAULT_LECTURE_HOURS
    lab_hours: int = 0

    @property
    def components(self) -> tuple[str, ...]:
        return (LECTURE, LAB) if self.needs_lab else (LECTURE,)

    @property
    def section_keys(self) -> frozenset[tuple[str, int | None, int]]:
        courses = self.course_ids or ("*",)
        return frozenset((course_id, self.year_level, self.block_number) for course_id in courses)

    def weekly_minutes(self, component: str) -> int:
        if component == LAB:
            return (self.lab_hours or DEFAULT_LAB_HOURS) * 60
        return (self.lecture_hours or DEFAULT_LECTURE_HOURS) * 60


@dataclass(frozen=True)
class Placement:
    """One gene: where and by whom a schedulable component is taught."""

    day_group: str
    time_slot_id: str
    room_id: str
    faculty_id: str | None = None


@dataclass(frozen=True)
class Assignment:
    block_id: str
    component: str
    day_group: str
    time_slot_id: str
    room_id: str
    faculty_id: str | None = None

    @property
    def placement(self) -> Placement:
        return Placement(
            day_group=self.day_group,
            time_slot_id=self.time_slot_id,
            room_id=self.room_id,
            faculty_id=self.faculty_id,
        )

    @classmethod
    def from_placement(cls, block_id: str, component: str, placement: Placement) -> "Assignment":
        return cls(
            block_id=block_id,
            component=component,
            day_group=placement.day_group,
            time_slot_id=placement.time_slot_id,
            room_id=placement.room_id,
            faculty_id=placement.faculty_id,
        )


Chromosome = tuple[Placement, ...]


@dataclass(frozen=True)
class StartOption:
    day_group: str
    time_slot_id: str
    position: int
    span: int


@dataclass(frozen=True)
class BlockRequest:
    """A gene slot: one component of one parallel group of subject blocks."""

    key: tuple[str, str]
    block_ids: tuple[str, ...]
    is_lab: bool
    weekly_minutes: int
    student_count: int
    units: int
    faculty_candidate_ids: tuple[str | None, ...]
    preferred_room_id: str | None
    room_candidate_ids: tuple[str, ...]
    section_keys: frozenset[tuple[str, int | None, int]]

    @property
    def leader_id(self) -> str:
        return self.key[0]

    @property
    def component(self) -> str:
        return self.key[1]


@dataclass(frozen=True)
class SchedulingInput:
    academic_setup_id: str
    blocks: tuple[SubjectBlock, ...]
    faculty: tuple[FacultyProfile, ...]
    rooms: tuple[RoomSpec, ...]
    time_slots: tuple[TimeSlotSpec, ...]
    included_days: tuple[str, ...] = ("MW", "TTH", "FRI")
    subject_codes: Mapping[str, str] = field(default_factory=dict)
    contiguity_gap_minutes: int = 15


class SlotCatalog:
    """Time slots per day group, ordered by start time."""

    def __init__(self, slots: Iterable[TimeSlotSpec], *, gap_minutes: int = 15) -> None:
        self.gap_minutes = gap_minutes
        grouped: dict[str, list[TimeSlotSpec]] = {}
        for slot in slots:
            grouped.setdefault(slot.day_group, []).append(slot)
        self._by_group: dict[str, tuple[TimeSlotSpec, ...]] = {
            group: tuple(sorted(items, key=lambda item: (item.start, -item.priority, item.id)))
            for group, items in grouped.items()
        }
        self._by_id: dict[str, TimeSlotSpec] = {}
        self._position: dict[str, int] = {}
        for items in self._by_group.values():
            for index, slot in enumerate(items):
                self._by_id[slot.id] = slot
                self._position[slot.id] = index

    @property
    def day_groups(self) -> tuple[str, ...]:
        return tuple(group for group in DAY_GROUP_ORDER if self._by_group.get(group))

    def slots_for(self, day_group: str) -> tuple[TimeSlotSpec, ...]:
        return self._by_group.get(day_group, ())

    def get(self, slot_id: str) -> TimeSlotSpec | None:
        return self._by_id.get(slot_id)

    def position(self, slot_id: str) -> int:
        return self._position[slot_id]

    @staticmethod
    def meeting_minutes(weekly_minutes: int, day_group: str) -> int:
        return math.ceil(weekly_minutes / len(DAY_GROUP_DAYS[day_group]))

    def cover(self, slot_id: str, minutes: int) -> tuple[tuple[TimeSlotSpec, ...], bool]:
        """Slots needed to hold a meeting of `minutes` starting at `slot_id`.

        The flag is False when the run crosses a gap wider than
        `gap_minutes` or runs past the last slot of the day group.
        """
        first = self._by_id[slot_id]
        ordered = self._by_group[first.day_group]
        run = [first]
        contiguous = True
        index = self._position[slot_id]
        while run[-1].end - first.start < minutes:
            index += 1
            if index >= len(ordered):
                return tuple(run), False
            nxt = ordered[index]
            if nxt.start - run[-1].end > self.gap_minutes:
                contiguous = False
            run.append(nxt)
        return tuple(run), contiguous

    def start_options(self, weekly_minutes: int, day_groups: Iterable[str]) -> tuple[StartOption, ...]:
        options: list[StartOption] = []
        for group in day_groups:
            minutes = self.meeting_minutes(weekly_minutes, group)
            for index, slot in enumerate(self.slots_for(group)):
                run, contiguous = self.cover(slot.id, minutes)
                if contiguous:
                    options.append(
                        StartOption(day_group=group, time_slot_id=slot.id, position=index, span=len(run))
                    )
        return tuple(options)


def group_parallel_blocks(blocks: Iterable[SubjectBlock]) -> list[tuple[SubjectBlock, ...]]:
    """Union blocks linked through `parallel_subject_ids` with the same block number.

    Groups keep input order; the first block of a group is its leader.
    """
    ordered = list(blocks)
    parent = list(range(len(ordered)))

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    def union(left: int, right: int) -> None:
        root_left, root_right = find(left), find(right)
        if root_left == root_right:
            return
        if root_left < root_right:
            parent[root_right] = root_left
        else:
            parent[root_left] = root_right

    by_subject_block: dict[tuple[str, int], list[int]] = {}
    for index, block in enumerate(ordered):
        by_subject_block.setdefault((block.subject_id, block.block_number), []).append(index)

    for index, block in enumerate(ordered):
        for linked_subject_id in block.parallel_subject_ids:
            if linked_subject_id == block.subject_id:
                continue
            for other in by_subject_block.get((linked_subject_id, block.block_number), []):
                union(index, other)

    groups: dict[int, list[SubjectBlock]] = {}
    for index, block in enumerate(ordered):
        groups.setdefault(find(index), []).append(block)
    return [tuple(groups[root]) for root in sorted(groups)]


class SchedulingProblem:
    """Immutable view of one run's input with derived lookups and gene slots."""

    def __init__(self, data: SchedulingInput) -> None:
        self.input = data
        self.blocks = {block.id: block for block in data.blocks}
        self.faculty = {item.user_id: item for item in data.faculty}
        self.rooms = {room.id: room for room in data.rooms}
        self.subject_codes = dict(data.subject_codes)
        for block in data.blocks:
            self.subject_codes.setdefault(block.subject_id, block.subject_code)

        included = set(data.included_days)
        self.catalog = SlotCatalog(
            (slot for slot in data.time_slots if slot.day_group in included),
            gap_minutes=data.contiguity_gap_minutes,
        )
        self.day_groups = self.catalog.day_groups
        self.parallel_groups = group_parallel_blocks(data.blocks)
        self.group_by_block: dict[str, tuple[SubjectBlock, ...]] = {
            block.id: group for group in self.parallel_groups for block in group
        }
        self.requests: tuple[BlockRequest, ...] = tuple(
            request for group in self.parallel_groups for request in self._requests_for_group(group)
        )
        self.start_options: tuple[tuple[StartOption, ...], ...] = tuple(
            self.catalog.start_options(request.weekly_minutes, self.day_groups) for request in self.requests
        )

    def _faculty_candidates(self, group: tuple[SubjectBlock, ...]) -> tuple[str | None, ...]:
        for block in group:
            if block.assigned_faculty_id and block.assigned_faculty_id in self.faculty:
                return (block.assigned_faculty_id,)
        if not self.faculty:
            return (None,)
        return tuple(self.faculty)

    def _room_candidates(self, *, is_lab: bool, student_count: int, preferred_room_id: str | None) -> tuple[str, ...]:
        compatible = [room for room in self.rooms.values() if room.supports(is_lab)]
        fitting = [room for room in compatible if room.capacity >= student_count]
        pool = fitting or compatible
        ranked = sorted(
            pool,
            key=lambda room: (
                room.id != preferred_room_id,
                -room.priority,
                abs(room.capacity - student_count),
                room.name,
            ),
        )
        return tuple(room.id for room in ranked)

    def _requests_for_group(self, group: tuple[SubjectBlock, ...]) -> list[BlockRequest]:
        leader = group[0]
        faculty_candidates = self._faculty_candidates(group)
        units = max(block.units for block in group)
        requests: list[BlockRequest] = []
        components = [LECTURE]
        if any(block.needs_lab for block in group):
            components.append(LAB)
        for component in components:
            is_lab = component == LAB
            members = [block for block in group if not is_lab or block.needs_lab]
            student_count = sum(block.expected_students for block in members)
            section_keys = frozenset().union(*(block.section_keys for block in members))
            weekly = max(block.weekly_minutes(component) for block in members)
            if is_lab:
                preferred = next((b.preferred_lab_room_id for b in group if b.preferred_lab_room_id), None)
            else:
                preferred = next((b.preferred_lecture_room_id for b in group if b.preferred_lecture_room_id), None)
            requests.append(
                BlockRequest(
                    key=(leader.id, component),
                    block_ids=tuple(block.id for block in members),
                    is_lab=is_lab,
                    weekly_minutes=weekly,
                    student_count=student_count,
                    units=units,
                    faculty_candidate_ids=faculty_candidates,
                    preferred_room_id=preferred,
                    room_candidate_ids=self._room_candidates(
                        is_lab=is_lab,
                        student_count=student_count,
                        preferred_room_id=preferred,
                    ),
                    section_keys=section_keys,
                )
            )
        return requests

    def meeting_slots(self, request: BlockRequest, placement: Placement) -> tuple[tuple[TimeSlotSpec, ...], bool]:
        slot = self.catalog.get(placement.time_slot_id)
        if slot is None or slot.day_group != placement.day_group:
            return (), False
        minutes = self.catalog.meeting_minutes(request.weekly_minutes, placement.day_group)
        return self.catalog.cover(slot.id, minutes)
