"""Hard-constraint checks shared by fitness evaluation and post-generation edits."""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Hashable, Iterable, Iterator
from dataclasses import dataclass

from app.services.scheduling.domain import RoomSpec

ROOM_CONFLICT = "room_conflict"
FACULTY_CONFLICT = "faculty_conflict"
SECTION_CONFLICT = "section_conflict"
ROOM_TYPE = "room_type"
ROOM_CAPACITY = "room_capacity"
FACULTY_OVERLOAD = "faculty_overload"
SESSION_CONTIGUITY = "session_contiguity"

HARD_CONSTRAINT_KINDS = (
    ROOM_CONFLICT,
    FACULTY_CONFLICT,
    SECTION_CONFLICT,
    ROOM_TYPE,
    ROOM_CAPACITY,
    FACULTY_OVERLOAD,
    SESSION_CONTIGUITY,
)


@dataclass(frozen=True)
class Booking:
    """One occupied (day, time slot) cell.

    Bookings sharing an `owner` belong to the same session and never clash
    with each other.
    """

    owner: Hashable
    day: str
    time_slot_id: str
    room_id: str
    faculty_id: str | None
    section_keys: frozenset
    label: str = ""
    faculty_label: str = "TBA"


class ClashIndex:
    def __init__(self, bookings: Iterable[Booking] = ()) -> None:
        self._by_room: dict[tuple, list[Booking]] = defaultdict(list)
        self._by_faculty: dict[tuple, list[Booking]] = defaultdict(list)
        self._by_section: dict[tuple, list[Booking]] = defaultdict(list)
        for booking in bookings:
            self.add(booking)

    def add(self, booking: Booking) -> None:
        self._by_room[(booking.room_id, booking.day, booking.time_slot_id)].append(booking)
        if booking.faculty_id is not None:
            self._by_faculty[(booking.faculty_id, booking.day, booking.time_slot_id)].append(booking)
        for section_key in booking.section_keys:
            self._by_section[(section_key, booking.day, booking.time_slot_id)].append(booking)

    def remove(self, booking: Booking) -> None:
        self._by_room[(booking.room_id, booking.day, booking.time_slot_id)].remove(booking)
        if booking.faculty_id is not None:
            self._by_faculty[(booking.faculty_id, booking.day, booking.time_slot_id)].remove(booking)
        for section_key in booking.section_keys:
            self._by_section[(section_key, booking.day, booking.time_slot_id)].remove(booking)

    def _buckets(self) -> Iterator[tuple[str, tuple, list[Booking]]]:
        for key, bucket in self._by_room.items():
            yield ROOM_CONFLICT, key, bucket
        for key, bucket in self._by_faculty.items():
            yield FACULTY_CONFLICT, key, bucket
        for key, bucket in self._by_section.items():
            yield SECTION_CONFLICT, key, bucket

    def counts(self) -> Counter:
        counts: Counter = Counter()
        for kind, _key, bucket in self._buckets():
            if len(bucket) < 2:
                continue
            owners = {booking.owner for booking in bucket}
            if len(owners) > 1:
                counts[kind] += len(owners) - 1
        return counts

    def conflict_pairs(self) -> Iterator[tuple[str, Hashable, Hashable]]:
        """Yield (kind, earlier_owner, later_owner) for every clashing owner pair."""
        for kind, _key, bucket in self._buckets():
            if len(bucket) < 2:
                continue
            owners: list[Hashable] = []
            for booking in bucket:
                if booking.owner not in owners:
                    owners.append(booking.owner)
            for left_index, left in enumerate(owners):
                for right in owners[left_index + 1 :]:
                    yield kind, left, right

    def is_free(self, booking: Booking) -> bool:
        for other in self._by_room.get((booking.room_id, booking.day, booking.time_slot_id), ()):
            if other.owner != booking.owner:
                return False
        if booking.faculty_id is not None:
            for other in self._by_faculty.get((booking.faculty_id, booking.day, booking.time_slot_id), ()):
                if other.owner != booking.owner:
                    return False
        for section_key in booking.section_keys:
            for other in self._by_section.get((section_key, booking.day, booking.time_slot_id), ()):
                if other.owner != booking.owner:
                    return False
        return True

    def clash_count(self, booking: Booking) -> int:
        total = 0
        for other in self._by_room.get((booking.room_id, booking.day, booking.time_slot_id), ()):
            total += other.owner != booking.owner
        if booking.faculty_id is not None:
            for other in self._by_faculty.get((booking.faculty_id, booking.day, booking.time_slot_id), ()):
                total += other.owner != booking.owner
        for section_key in booking.section_keys:
            for other in self._by_section.get((section_key, booking.day, booking.time_slot_id), ()):
                total += other.owner != booking.owner
        return total

    def reasons_for(self, booking: Booking) -> list[str]:
        reasons: list[str] = []
        for other in self._by_room.get((booking.room_id, booking.day, booking.time_slot_id), ()):
            if other.owner != booking.owner:
                reasons.append(f"Room is occupied by {other.label} ({other.faculty_label})")
        if booking.faculty_id is not None:
            for other in self._by_faculty.get((booking.faculty_id, booking.day, booking.time_slot_id), ()):
                if other.owner != booking.owner:
                    reasons.append(f"Faculty is already teaching {other.label} at this time")
        for section_key in sorted(booking.section_keys, key=str):
            for other in self._by_section.get((section_key, booking.day, booking.time_slot_id), ()):
                if other.owner != booking.owner:
                    reasons.append(f"Students (Block {section_key[2]}) have {other.label}")
        return _unique(reasons)


def room_violations(room: RoomSpec | None, *, is_lab: bool, student_count: int) -> list[tuple[str, str]]:
    if room is None:
        return [(ROOM_TYPE, "Room is not available for scheduling")]
    violations: list[tuple[str, str]] = []
    if not room.supports(is_lab):
        session = "Lab" if is_lab else "Lecture"
        violations.append((ROOM_TYPE, f"{session} session assigned to {room.room_type} room {room.name}"))
    if room.capacity < student_count:
        violations.append(
            (ROOM_CAPACITY, f"Room capacity ({room.capacity}) too small for {student_count} students")
        )
    return violations


def overload_reason(units: int, max_units: int) -> str:
    return f"Faculty load of {units} units exceeds maximum of {max_units}"


def contiguity_reason() -> str:
    return "Session does not fit in contiguous time slots"


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
