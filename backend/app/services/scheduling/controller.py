from __future__ import annotations

import logging
import random
import threading
from collections import defaultdict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any

from app.core.exceptions import InfeasibilityError, SchedulerError
from app.schemas.generator import GenerationSettingsBase
from app.services.scheduling.codec import ChromosomeCodec
from app.services.scheduling.domain import (
    Assignment,
    Chromosome,
    SchedulingInput,
    SchedulingProblem,
)
from app.services.scheduling.fitness import EvaluationResult, FitnessEvaluator
from app.services.scheduling.operators import GeneticOperators

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, float], None]


class EvolutionState(str, Enum):
    initializing = "INITIALIZING"
    evolving = "EVOLVING"
    converged = "CONVERGED"
    max_generations_reached = "MAX_GENERATIONS_REACHED"
    materializing = "MATERIALIZING"
    done = "DONE"
    failed = "FAILED"


ALLOWED_TRANSITIONS: dict[EvolutionState, frozenset[EvolutionState]] = {
    EvolutionState.initializing: frozenset({EvolutionState.evolving, EvolutionState.failed}),
    EvolutionState.evolving: frozenset(
        {EvolutionState.converged, EvolutionState.max_generations_reached, EvolutionState.failed}
    ),
    EvolutionState.converged: frozenset({EvolutionState.materializing, EvolutionState.failed}),
    EvolutionState.max_generations_reached: frozenset({EvolutionState.materializing, EvolutionState.failed}),
    EvolutionState.materializing: frozenset({EvolutionState.done, EvolutionState.failed}),
    EvolutionState.done: frozenset(),
    EvolutionState.failed: frozenset(),
}


def progress_percent(generation: int, max_generations: int) -> int:
    return min(100, int(generation * 100 / max_generations))


def progress_message(generation: int, max_generations: int, best_fitness: float) -> str:
    return f"Generation {generation}/{max_generations} - Best Fitness: {best_fitness:.2f}"


@dataclass(frozen=True)
class GenerationStat:
    generation: int
    best_fitness: float
    average_fitness: float
    hard_conflicts: int
    mutation_rate: float

    def as_dict(self) -> dict:
        return {
            "generation": self.generation,
            "best_fitness": self.best_fitness,
            "average_fitness": self.average_fitness,
            "hard_conflicts": self.hard_conflicts,
            "mutation_rate": self.mutation_rate,
        }


@dataclass
class EvolutionResult:
    chromosome: Chromosome
    assignments: tuple[Assignment, ...]
    evaluation: EvaluationResult
    best_generation: int
    generations_run: int
    converged: bool
    elapsed_seconds: float
    history: list[GenerationStat] = field(default_factory=list)
    materialized: Any = None


class EvolutionController:
    """Drives one genetic-algorithm run from input validation to materialization."""

    def __init__(
        self,
        data: SchedulingInput | SchedulingProblem,
        settings: GenerationSettingsBase,
        *,
        evaluation_workers: int = 1,
        parallel_evaluation_threshold: int = 64,
        max_repair_passes: int = 20,
        overload_hard: bool = False,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.problem = data if isinstance(data, SchedulingProblem) else SchedulingProblem(data)
        self.settings = settings
        self.random = random.Random(settings.random_seed)
        self.evaluation_workers = max(1, evaluation_workers)
        self.parallel_evaluation_threshold = parallel_evaluation_threshold
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.evaluator = FitnessEvaluator(
            self.problem,
            settings.fitness_weights,
            overload_hard=overload_hard,
        )
        self.operators = GeneticOperators(
            self.problem,
            self.evaluator,
            rng=self.random,
            tournament_size=settings.tournament_size,
            max_repair_passes=max_repair_passes,
        )
        self.state = EvolutionState.initializing
        self.failure_message: str | None = None
        self._executor: ThreadPoolExecutor | None = None

    # -- state machine ----------------------------------------------------

    def _transition(self, target: EvolutionState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise SchedulerError(f"Invalid evolution state transition {self.state.value} -> {target.value}")
        logger.info(
            "EVOLUTION STATE | setup_id=%s | %s -> %s",
            self.problem.input.academic_setup_id,
            self.state.value,
            target.value,
        )
        self.state = target

    def _fail(self, exc: Exception) -> None:
        self.failure_message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        if self.state not in {EvolutionState.done, EvolutionState.failed}:
            self._transition(EvolutionState.failed)

    # -- feasibility --------------------------------------------------------

    def check_feasibility(self) -> None:
        """Reject inputs no timetable can satisfy before any evolution work."""
        problem = self.problem
        if not problem.requests:
            raise InfeasibilityError("No active subject blocks to schedule for this academic setup")
        if not problem.rooms:
            raise InfeasibilityError("No active rooms available for scheduling")
        if not problem.day_groups:
            days = ", ".join(problem.input.included_days)
            raise InfeasibilityError(f"No active time slots for the selected days: {days}")

        lab_rooms = [room for room in problem.rooms.values() if room.supports(True)]
        lecture_rooms = [room for room in problem.rooms.values() if room.supports(False)]
        if any(request.is_lab for request in problem.requests) and not lab_rooms:
            raise InfeasibilityError(
                "Lab sessions require a laboratory or hybrid room, but none are available"
            )
        if any(not request.is_lab for request in problem.requests) and not lecture_rooms:
            raise InfeasibilityError(
                "Lecture sessions require a lecture or hybrid room, but none are available"
            )

        total_slots = sum(len(problem.catalog.slots_for(group)) for group in problem.day_groups)
        lab_demand = 0
        total_demand = 0
        faculty_demand: dict[str, int] = defaultdict(int)
        section_demand: dict[tuple, int] = defaultdict(int)
        for request, options in zip(problem.requests, problem.start_options):
            label = self._request_label(request.leader_id, request.component)
            pool = lab_rooms if request.is_lab else lecture_rooms
            largest = max(room.capacity for room in pool)
            if largest < request.student_count:
                kind = "laboratory" if request.is_lab else "lecture"
                raise InfeasibilityError(
                    f"{label} needs a room for {request.student_count} students "
                    f"but the largest {kind} room holds {largest}",
                )
            if not options:
                raise InfeasibilityError(
                    f"{label} needs {request.weekly_minutes} minutes per week but no run of "
                    "contiguous time slots in the selected days is long enough",
                )
            span = min(option.span for option in options)
            total_demand += span
            if request.is_lab:
                lab_demand += span
            if len(request.faculty_candidate_ids) == 1 and request.faculty_candidate_ids[0] is not None:
                faculty_demand[request.faculty_candidate_ids[0]] += span
            for section_key in request.section_keys:
                section_demand[section_key] += span

        if lab_demand > len(lab_rooms) * total_slots:
            raise InfeasibilityError(
                f"Not enough laboratory room time: {lab_demand} lab slot(s) needed "
                f"but only {len(lab_rooms) * total_slots} available",
            )
        if total_demand > len(problem.rooms) * total_slots:
            raise InfeasibilityError(
                f"Not enough room time: {total_demand} slot(s) needed "
                f"but only {len(problem.rooms) * total_slots} available",
            )
        for faculty_id, demand in faculty_demand.items():
            if demand > total_slots:
                name = problem.faculty[faculty_id].name
                raise InfeasibilityError(
                    f"{name} is assigned {demand} slot(s) of teaching but only {total_slots} time slots exist",
                )
        for section_key, demand in section_demand.items():
            if demand > total_slots:
                raise InfeasibilityError(
                    f"Block {section_key[2]} students need {demand} slot(s) "
                    f"but only {total_slots} time slots exist",
                )

    def _request_label(self, block_id: str, component: str) -> str:
        block = self.problem.blocks[block_id]
        return f"{block.subject_code} block {block.block_number} {component}"

    # -- population -------------------------------------------------------

    def _fresh_individual(self) -> Chromosome:
        repaired = self.operators.repair(self.operators.random_individual())
        if repaired is None:
            # Accepted even with residual conflicts; selection weeds it out.
            return self.operators.constructive_individual(randomized=True)
        return repaired

    def _build_initial_population(self) -> list[Chromosome]:
        population: list[Chromosome] = [self.operators.constructive_individual(randomized=False)]
        while len(population) < self.settings.population_size:
            population.append(self._fresh_individual())
        return population

    def _evaluate_population(self, population: Sequence[Chromosome]) -> list[EvaluationResult]:
        if self._executor is not None and len(population) >= self.parallel_evaluation_threshold:
            return list(self._executor.map(self.evaluator.evaluate, population))
        return [self.evaluator.evaluate(item) for item in population]

    def _adaptive_mutation_rate(self, stagnant_generations: int, current: float) -> float:
        base = self.settings.mutation_rate
        if stagnant_generations == 0:
            return base
        if stagnant_generations > self.settings.stagnation_limit:
            ceiling = max(base, self.settings.max_mutation_rate)
            return min(ceiling, current + 0.05)
        return current

    def _next_population(
        self,
        ranked_population: list[Chromosome],
        ranked_evaluations: list[EvaluationResult],
        *,
        mutation_rate: float,
        stagnant: int,
    ) -> list[Chromosome]:
        size = self.settings.population_size
        elite_count = min(self.settings.elite_count, size)
        next_population = list(ranked_population[:elite_count])
        while len(next_population) < size:
            parent_a = self.operators.select(ranked_population, ranked_evaluations)
            parent_b = self.operators.select(ranked_population, ranked_evaluations)
            if self.random.random() < self.settings.crossover_rate:
                child = self.operators.crossover(parent_a, parent_b)
            else:
                child = parent_a
            child = self.operators.mutate(child, mutation_rate=mutation_rate)
            repaired = self.operators.repair(child)
            next_population.append(repaired if repaired is not None else self._fresh_individual())

        if stagnant and stagnant % self.settings.diversity_interval == 0:
            offspring = len(next_population) - elite_count
            injected = offspring // 4
            for index in range(len(next_population) - injected, len(next_population)):
                next_population[index] = self._fresh_individual()
            if injected:
                logger.debug("EVOLUTION DIVERSITY | injected=%s | stagnant=%s", injected, stagnant)
        return next_population

    def _target_bounds(self) -> tuple[float, float]:
        ceiling = self.evaluator.ceiling
        upper = self.settings.target_fitness_max if self.settings.target_fitness_max is not None else ceiling
        if self.settings.target_fitness_min is not None:
            lower = self.settings.target_fitness_min
        else:
            lower = min(upper, ceiling)
        return lower, upper

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SchedulerError("Generation cancelled")

    # -- run --------------------------------------------------------------

    def _evolve(self, population: list[Chromosome]) -> tuple[Chromosome, EvaluationResult, int, int, list[GenerationStat]]:
        max_generations = self.settings.max_generations
        lower, upper = self._target_bounds()
        best: Chromosome | None = None
        best_eval: EvaluationResult | None = None
        best_generation = 0
        stagnant = 0
        mutation_rate = self.settings.mutation_rate
        history: list[GenerationStat] = []

        for generation in range(1, max_generations + 1):
            self._check_cancelled()
            evaluations = self._evaluate_population(population)
            ranked_indices = sorted(range(len(population)), key=lambda idx: (-evaluations[idx].fitness, idx))
            population = [population[idx] for idx in ranked_indices]
            evaluations = [evaluations[idx] for idx in ranked_indices]

            leader_eval = evaluations[0]
            if best_eval is None or leader_eval.fitness > best_eval.fitness:
                best, best_eval, best_generation = population[0], leader_eval, generation
                stagnant = 0
            else:
                stagnant += 1

            mutation_rate = self._adaptive_mutation_rate(stagnant, mutation_rate)
            history.append(
                GenerationStat(
                    generation=generation,
                    best_fitness=leader_eval.fitness,
                    average_fitness=round(sum(item.fitness for item in evaluations) / len(evaluations), 4),
                    hard_conflicts=leader_eval.hard_conflicts,
                    mutation_rate=round(mutation_rate, 4),
                )
            )
            logger.debug(
                "EVOLUTION GENERATION | generation=%s/%s | best=%.4f | hard=%s | stagnant=%s",
                generation,
                max_generations,
                best_eval.fitness,
                best_eval.hard_conflicts,
                stagnant,
            )
            if self.progress_callback is not None:
                self.progress_callback(generation, max_generations, best_eval.fitness)

            if lower <= best_eval.fitness <= upper:
                self._transition(EvolutionState.converged)
                return best, best_eval, best_generation, generation, history
            if generation == max_generations:
                break
            population = self._next_population(
                population,
                evaluations,
                mutation_rate=mutation_rate,
                stagnant=stagnant,
            )

        self._transition(EvolutionState.max_generations_reached)
        return best, best_eval, best_generation, max_generations, history

    def run(self, materialize: Callable[[EvolutionResult], Any] | None = None) -> EvolutionResult:
        started = perf_counter()
        try:
            self.check_feasibility()
            codec = ChromosomeCodec(self.problem.requests, self.problem.input.blocks)
            population = self._build_initial_population()
            self._transition(EvolutionState.evolving)

            use_pool = (
                self.evaluation_workers > 1
                and self.settings.population_size >= self.parallel_evaluation_threshold
            )
            if use_pool:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.evaluation_workers,
                    thread_name_prefix="fitness",
                )
            try:
                best, best_eval, best_generation, generations_run, history = self._evolve(population)
            finally:
                if self._executor is not None:
                    self._executor.shutdown(wait=True)
                    self._executor = None

            result = EvolutionResult(
                chromosome=best,
                assignments=codec.decode(best),
                evaluation=best_eval,
                best_generation=best_generation,
                generations_run=generations_run,
                converged=self.state == EvolutionState.converged,
                elapsed_seconds=round(perf_counter() - started, 3),
                history=history,
            )
            self._transition(EvolutionState.materializing)
            if materialize is not None:
                result.materialized = materialize(result)
            self._transition(EvolutionState.done)
        except Exception as exc:
            self._fail(exc)
            raise

        logger.info(
            "EVOLUTION DONE | setup_id=%s | fitness=%.4f | hard=%s | best_generation=%s | generations=%s | elapsed=%.3fs",
            self.problem.input.academic_setup_id,
            result.evaluation.fitness,
            result.evaluation.hard_conflicts,
            result.best_generation,
            result.generations_run,
            result.elapsed_seconds,
        )
        return result
