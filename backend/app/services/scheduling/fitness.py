from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from threading import Lock

from app.schemas.generator import FitnessWeights
from app.services.scheduling.constraints import (
    FACULTY_OVERLOAD,
    SESSION_CONTIGUITY,
    Booking,
    ClashIndex,
    room_violations,
)
from app.services.scheduling.domain import (
    DAY_GROUP_DAYS,
    BlockRequest,
    Chromosome,
    Placement,
    SchedulingProblem,
    TimeSlotSpec,
)


@dataclass(frozen=True)
class EvaluationResult:
    fitness: float
    hard_conflicts: int
    soft_penalty: float
    breakdown: dict[str, int] = field(default_factory=dict, compare=False)


class FitnessEvaluator:
    """Scores chromosomes against the hard and soft timetable constraints.

    Pure with respect to the chromosome and the problem: equal inputs always
    produce equal results, so results are memoised per chromosome.
    """

    def __init__(
        self,
        problem: SchedulingProblem,
        weights: FitnessWeights | None = None,
        *,
        overload_hard: bool = False,
    ) -> None:
        self.problem = problem
        self.weights = weights or FitnessWeights()
        self.overload_hard = overload_hard
        self.eval_cache: dict[Chromosome, EvaluationResult] = {}
        self._cache_lock = Lock()

    @property
    def ceiling(self) -> float:
        return self.weights.fitness_ceiling

    def evaluate(self, chromosome: Chromosome) -> EvaluationResult:
        with self._cache_lock:
            cached = self.eval_cache.get(chromosome)
        if cached is not None:
            return cached
        result = self._score(chromosome)
        with self._cache_lock:
            self.eval_cache[chromosome] = result
        return result

    def bookings_for(self, index: int, placement: Placement, slots: tuple[TimeSlotSpec, ...]) -> list[Booking]:
        request = self.problem.requests[index]
        return [
            Booking(
                owner=index,
                day=day,
                time_slot_id=slot.id,
                room_id=placement.room_id,
                faculty_id=placement.faculty_id,
                section_keys=request.section_keys,
            )
            for day in DAY_GROUP_DAYS.get(placement.day_group, ())
            for slot in slots
        ]

    def gene_soft_points(
        self,
        request: BlockRequest,
        placement: Placement,
        slots: tuple[TimeSlotSpec, ...],
    ) -> tuple[float, float]:
        """Return (earned, possible) soft points that depend on one gene alone."""
        weights = self.weights
        earned = 0.0
        possible = 0.0
        if request.preferred_room_id:
            possible += weights.preferred_room
            if placement.room_id == request.preferred_room_id:
                earned += weights.preferred_room

        faculty = self.problem.faculty.get(placement.faculty_id) if placement.faculty_id else None
        if faculty is None or not slots:
            return earned, possible

        if faculty.preferred_day_off:
            possible += weights.day_off
            days = DAY_GROUP_DAYS.get(placement.day_group, ())
            if not any(faculty.is_day_off(day, slot.period) for day in days for slot in slots):
                earned += weights.day_off
        if faculty.preferred_time_period:
            possible += weights.time_period
            if slots[0].period == faculty.preferred_time_period:
                earned += weights.time_period
        return earned, possible

    def _score(self, chromosome: Chromosome) -> EvaluationResult:
        problem = self.problem
        weights = self.weights
        if len(chromosome) != len(problem.requests):
            raise ValueError("chromosome length does not match the problem's gene slots")

        counts: Counter = Counter()
        index = ClashIndex()
        earned = 0.0
        possible = 0.0
        faculty_day_positions: dict[tuple[str, str], set[int]] = defaultdict(set)
        faculty_units: dict[str, dict[str, int]] = defaultdict(dict)
        faculty_by_leader: dict[str, dict[str, str | None]] = defaultdict(dict)

        for gene_index, (request, placement) in enumerate(zip(problem.requests, chromosome)):
            slots, contiguous = problem.meeting_slots(request, placement)
            if not contiguous:
                counts[SESSION_CONTIGUITY] += 1
            for kind, _reason in room_violations(
                problem.rooms.get(placement.room_id),
                is_lab=request.is_lab,
                student_count=request.student_count,
            ):
                counts[kind] += 1

            gene_earned, gene_possible = self.gene_soft_points(request, placement, slots)
            earned += gene_earned
            possible += gene_possible

            for booking in self.bookings_for(gene_index, placement, slots):
                index.add(booking)
                if placement.faculty_id is not None:
                    faculty_day_positions[(placement.faculty_id, booking.day)].add(
                        problem.catalog.position(booking.time_slot_id)
                    )
            if placement.faculty_id is not None:
                faculty_units[placement.faculty_id][request.leader_id] = request.units
            faculty_by_leader[request.leader_id][request.component] = placement.faculty_id

        counts.update(index.counts())

        for faculty_id, loads in faculty_units.items():
            profile = problem.faculty.get(faculty_id)
            if profile is None:
                continue
            within = sum(loads.values()) <= profile.max_units
            if self.overload_hard:
                if not within:
                    counts[FACULTY_OVERLOAD] += 1
            else:
                possible += weights.unit_load
                if within:
                    earned += weights.unit_load

        for positions in faculty_day_positions.values():
            gaps = (max(positions) - min(positions) + 1) - len(positions)
            possible += weights.idle_gap
            earned += weights.idle_gap / (1 + gaps)

        for components in faculty_by_leader.values():
            if len(components) < 2:
                continue
            possible += weights.same_instructor
            if len(set(components.values())) == 1:
                earned += weights.same_instructor

        soft_ratio = earned / possible if possible > 0 else 1.0
        hard_penalty = sum(weights.hard_weight(kind) * count for kind, count in counts.items())
        fitness = round(weights.fitness_ceiling * soft_ratio - hard_penalty, 6)
        return EvaluationResult(
            fitness=fitness,
            hard_conflicts=sum(counts.values()),
            soft_penalty=round(possible - earned, 6),
            breakdown=dict(counts),
        )
