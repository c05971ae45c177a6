from __future__ import annotations

import random
from collections.abc import Iterator, Sequence

from app.services.scheduling.constraints import Booking, ClashIndex
from app.services.scheduling.domain import (
    DAY_GROUP_ORDER,
    Chromosome,
    Placement,
    SchedulingProblem,
    StartOption,
)
from app.services.scheduling.fitness import EvaluationResult, FitnessEvaluator

PAIRED_DAY_GROUPS = ("MW", "TTH")


class GeneticOperators:
    """Selection, crossover, mutation and repair over placement chromosomes."""

    def __init__(
        self,
        problem: SchedulingProblem,
        evaluator: FitnessEvaluator,
        *,
        rng: random.Random,
        tournament_size: int = 4,
        max_repair_passes: int = 20,
    ) -> None:
        self.problem = problem
        self.evaluator = evaluator
        self.random = rng
        self.tournament_size = tournament_size
        self.max_repair_passes = max_repair_passes

        # Lecture and lab genes of one block group are inherited together.
        groups: dict[str, list[int]] = {}
        for index, request in enumerate(problem.requests):
            groups.setdefault(request.leader_id, []).append(index)
        self.gene_groups: tuple[tuple[int, ...], ...] = tuple(tuple(items) for items in groups.values())
        self.sibling_indices: dict[int, tuple[int, ...]] = {
            index: tuple(other for other in group if other != index)
            for group in self.gene_groups
            for index in group
        }

    # -- construction ---------------------------------------------------

    def random_placement(self, index: int, *, faculty_id: str | None = None) -> Placement:
        request = self.problem.requests[index]
        start = self.random.choice(self.problem.start_options[index])
        if faculty_id is None or faculty_id not in request.faculty_candidate_ids:
            faculty_id = self.random.choice(request.faculty_candidate_ids)
        return Placement(
            day_group=start.day_group,
            time_slot_id=start.time_slot_id,
            room_id=self.random.choice(request.room_candidate_ids),
            faculty_id=faculty_id,
        )

    def random_individual(self) -> Chromosome:
        genes: list[Placement | None] = [None] * len(self.problem.requests)
        for group in self.gene_groups:
            first = self.random_placement(group[0])
            genes[group[0]] = first
            for index in group[1:]:
                # Siblings reuse the first component's instructor.
                genes[index] = self.random_placement(index, faculty_id=first.faculty_id)
        return tuple(genes)

    def constructive_individual(self, *, randomized: bool = True) -> Chromosome:
        """Greedy seeding: place genes one by one at their least-conflicting option."""
        problem = self.problem
        order = list(range(len(problem.requests)))
        if randomized:
            self.random.shuffle(order)
        else:
            order.sort(
                key=lambda index: (
                    len(problem.start_options[index])
                    * len(problem.requests[index].room_candidate_ids)
                    * len(problem.requests[index].faculty_candidate_ids),
                    index,
                )
            )

        index_map = ClashIndex()
        genes: list[Placement | None] = [None] * len(problem.requests)
        assigned_units: dict[str, dict[str, int]] = {}
        for gene_index in order:
            request = problem.requests[gene_index]
            starts = list(problem.start_options[gene_index])
            faculties = list(request.faculty_candidate_ids)
            if randomized:
                self.random.shuffle(starts)
                self.random.shuffle(faculties)
            sibling_faculty = {
                genes[other].faculty_id for other in self.sibling_indices[gene_index] if genes[other] is not None
            }

            best: Placement | None = None
            best_key: tuple | None = None
            for start in starts:
                slots, _ = problem.catalog.cover(
                    start.time_slot_id,
                    problem.catalog.meeting_minutes(request.weekly_minutes, start.day_group),
                )
                for faculty_id in faculties:
                    overload = 0
                    if faculty_id is not None:
                        profile = problem.faculty.get(faculty_id)
                        loads = dict(assigned_units.get(faculty_id, {}))
                        loads[request.leader_id] = request.units
                        if profile is not None and sum(loads.values()) > profile.max_units:
                            overload = 1
                    mismatch = 1 if sibling_faculty and faculty_id not in sibling_faculty else 0
                    for room_id in request.room_candidate_ids:
                        placement = Placement(start.day_group, start.time_slot_id, room_id, faculty_id)
                        clashes = sum(
                            index_map.clash_count(booking)
                            for booking in self.evaluator.bookings_for(gene_index, placement, slots)
                        )
                        earned, possible = self.evaluator.gene_soft_points(request, placement, slots)
                        key = (clashes, overload, possible - earned, mismatch)
                        if best_key is None or key < best_key:
                            best, best_key = placement, key
                        if clashes == 0:
                            break
                    if best_key == (0, 0, 0, 0):
                        break
                if best_key == (0, 0, 0, 0):
                    break

            if best is None:
                best = self.random_placement(gene_index)
            genes[gene_index] = best
            slots, _ = problem.meeting_slots(request, best)
            for booking in self.evaluator.bookings_for(gene_index, best, slots):
                index_map.add(booking)
            if best.faculty_id is not None:
                assigned_units.setdefault(best.faculty_id, {})[request.leader_id] = request.units
        return tuple(genes)

    # -- genetic operators ----------------------------------------------

    def select(self, population: Sequence[Chromosome], evaluations: Sequence[EvaluationResult]) -> Chromosome:
        size = min(self.tournament_size, len(population))
        contenders = self.random.sample(range(len(population)), size)
        best_index = min(contenders, key=lambda idx: (-evaluations[idx].fitness, idx))
        return population[best_index]

    def crossover(self, parent_a: Chromosome, parent_b: Chromosome) -> Chromosome:
        child = list(parent_a)
        for group in self.gene_groups:
            if self.random.random() < 0.5:
                continue
            for index in group:
                child[index] = parent_b[index]
        return tuple(child)

    def mutate(self, genes: Chromosome, *, mutation_rate: float) -> Chromosome:
        mutated = list(genes)
        changed = False
        for index in range(len(mutated)):
            if self.random.random() < mutation_rate:
                mutated[index] = self.random_placement(index)
                changed = True
        return tuple(mutated) if changed else genes

    # -- repair -----------------------------------------------------------

    def _gene_contribution(self, genes: Sequence[Placement], index: int) -> float:
        request = self.problem.requests[index]
        slots, _ = self.problem.meeting_slots(request, genes[index])
        earned, possible = self.evaluator.gene_soft_points(request, genes[index], slots)
        return earned - possible

    def _ordered_starts(self, index: int, current: Placement) -> list[StartOption]:
        options = self.problem.start_options[index]
        slot = self.problem.catalog.get(current.time_slot_id)
        current_position = self.problem.catalog.position(slot.id) if slot is not None else 0

        def sort_key(option: StartOption) -> tuple:
            same_group = option.day_group == current.day_group
            if same_group:
                return (0, 0, abs(option.position - current_position), option.position)
            group_rank = DAY_GROUP_ORDER.index(option.day_group)
            return (1, option.day_group not in PAIRED_DAY_GROUPS, group_rank, option.position)

        return sorted(options, key=sort_key)

    def nearest_alternatives(self, index: int, current: Placement) -> Iterator[Placement]:
        """Alternatives ordered from the current placement outward.

        Same start with other rooms and instructors first, then other starts
        of the same day group by distance, then the remaining day groups with
        paired groups ahead of single days.
        """
        request = self.problem.requests[index]
        rooms = [current.room_id] + [room for room in request.room_candidate_ids if room != current.room_id]
        faculties = [current.faculty_id] + [
            faculty for faculty in request.faculty_candidate_ids if faculty != current.faculty_id
        ]
        if current.room_id not in request.room_candidate_ids:
            rooms = rooms[1:]
        if current.faculty_id not in request.faculty_candidate_ids:
            faculties = faculties[1:]
        for start in self._ordered_starts(index, current):
            for faculty_id in faculties:
                for room_id in rooms:
                    placement = Placement(start.day_group, start.time_slot_id, room_id, faculty_id)
                    if placement != current:
                        yield placement

    def repair(self, genes: Chromosome) -> Chromosome | None:
        """Resolve double bookings deterministically.

        Returns ``None`` when conflicts survive ``max_repair_passes`` passes.
        """
        problem = self.problem
        repaired = list(genes)
        for _ in range(self.max_repair_passes):
            bookings: dict[int, list[Booking]] = {}
            index_map = ClashIndex()
            for gene_index, (request, placement) in enumerate(zip(problem.requests, repaired)):
                slots, _ = problem.meeting_slots(request, placement)
                bookings[gene_index] = self.evaluator.bookings_for(gene_index, placement, slots)
                for booking in bookings[gene_index]:
                    index_map.add(booking)

            losers: set[int] = set()
            for _kind, left, right in index_map.conflict_pairs():
                if left in losers or right in losers:
                    continue
                left_score = self._gene_contribution(repaired, left)
                right_score = self._gene_contribution(repaired, right)
                if left_score < right_score:
                    losers.add(left)
                elif right_score < left_score:
                    losers.add(right)
                else:
                    losers.add(max(left, right))
            if not losers:
                return tuple(repaired)

            for loser in sorted(losers):
                for booking in bookings[loser]:
                    index_map.remove(booking)
                request = problem.requests[loser]
                for candidate in self.nearest_alternatives(loser, repaired[loser]):
                    slots, contiguous = problem.meeting_slots(request, candidate)
                    if not contiguous:
                        continue
                    candidate_bookings = self.evaluator.bookings_for(loser, candidate, slots)
                    if all(index_map.is_free(booking) for booking in candidate_bookings):
                        repaired[loser] = candidate
                        bookings[loser] = candidate_bookings
                        break
                # An unmoved loser stays put; a later pass may free a slot for it.
                for booking in bookings[loser]:
                    index_map.add(booking)

        if any(True for _ in self._clash_pairs(repaired)):
            return None
        return tuple(repaired)

    def _clash_pairs(self, genes: Sequence[Placement]) -> Iterator[tuple]:
        index_map = ClashIndex()
        for gene_index, (request, placement) in enumerate(zip(self.problem.requests, genes)):
            slots, _ = self.problem.meeting_slots(request, placement)
            for booking in self.evaluator.bookings_for(gene_index, placement, slots):
                index_map.add(booking)
        return index_map.conflict_pairs()
