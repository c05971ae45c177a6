from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.config import get_settings

DayGroupValue = Literal["MW", "TTH", "FRI", "SAT", "SUN"]
DAY_GROUP_VALUES: tuple[str, ...] = ("MW", "TTH", "FRI", "SAT", "SUN")

JobStatus = Literal["pending", "running", "completed", "failed", "not_found"]


class FitnessWeights(BaseModel):
    """Scoring constants for the fitness function.

    ``fitness = fitness_ceiling * soft_ratio - sum(hard weight * violations)``
    where ``soft_ratio`` is the share of soft preference points earned. Every
    hard weight must exceed the ceiling so no amount of satisfied preferences
    outweighs a single hard violation.
    """

    fitness_ceiling: float = Field(default=100.0, gt=0.0, le=10_000.0)

    room_conflict: int = Field(default=1000, ge=1, le=1_000_000)
    faculty_conflict: int = Field(default=1000, ge=1, le=1_000_000)
    section_conflict: int = Field(default=1000, ge=1, le=1_000_000)
    room_type: int = Field(default=1000, ge=1, le=1_000_000)
    room_capacity: int = Field(default=1000, ge=1, le=1_000_000)
    faculty_overload: int = Field(default=1000, ge=1, le=1_000_000)
    session_contiguity: int = Field(default=1000, ge=1, le=1_000_000)

    preferred_room: float = Field(default=10.0, ge=0.0, le=1000.0)
    day_off: float = Field(default=15.0, ge=0.0, le=1000.0)
    time_period: float = Field(default=8.0, ge=0.0, le=1000.0)
    idle_gap: float = Field(default=6.0, ge=0.0, le=1000.0)
    unit_load: float = Field(default=12.0, ge=0.0, le=1000.0)
    same_instructor: float = Field(default=5.0, ge=0.0, le=1000.0)

    @model_validator(mode="after")
    def validate_hard_dominance(self) -> "FitnessWeights":
        for kind in (
            "room_conflict",
            "faculty_conflict",
            "section_conflict",
            "room_type",
            "room_capacity",
            "faculty_overload",
            "session_contiguity",
        ):
            if getattr(self, kind) <= self.fitness_ceiling:
                raise ValueError(f"{kind} weight must exceed fitness_ceiling")
        return self

    def hard_weight(self, kind: str) -> int:
        return getattr(self, kind)


class GenerationSettingsBase(BaseModel):
    population_size: int = Field(default=50, ge=1, le=2000)
    max_generations: int = Field(default=100, ge=1, le=5000)
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    elite_count: int = Field(default=1, ge=1, le=100)
    tournament_size: int = Field(default=4, ge=1, le=50)
    stagnation_limit: int = Field(default=6, ge=1, le=1000)
    diversity_interval: int = Field(default=5, ge=1, le=1000)
    max_mutation_rate: float = Field(default=0.4, ge=0.0, le=1.0)
    target_fitness_min: float | None = None
    target_fitness_max: float | None = None
    random_seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    fitness_weights: FitnessWeights = Field(default_factory=FitnessWeights)

    @model_validator(mode="after")
    def validate_relationships(self) -> "GenerationSettingsBase":
        if (
            self.target_fitness_min is not None
            and self.target_fitness_max is not None
            and self.target_fitness_min > self.target_fitness_max
        ):
            raise ValueError("target_fitness_max must be greater than or equal to target_fitness_min")
        return self


class GenerateScheduleRequest(BaseModel):
    academic_setup_id: str = Field(min_length=1, max_length=36)
    name: str | None = Field(default=None, max_length=200)
    population_size: int = Field(default=50, ge=1, le=2000)
    max_generations: int = Field(default=100, ge=1, le=5000)
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    included_days: list[DayGroupValue] = Field(
        default_factory=lambda: list(get_settings().default_included_days),
        min_length=1,
    )
    target_fitness_min: float | None = None
    target_fitness_max: float | None = None
    random_seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    fitness_weights: FitnessWeights | None = None

    @field_validator("included_days")
    @classmethod
    def dedupe_days(cls, value: list[str]) -> list[str]:
        ordered: list[str] = []
        for item in value:
            if item not in ordered:
                ordered.append(item)
        return ordered

    @model_validator(mode="after")
    def validate_targets(self) -> "GenerateScheduleRequest":
        if (
            self.target_fitness_min is not None
            and self.target_fitness_max is not None
            and self.target_fitness_min > self.target_fitness_max
        ):
            raise ValueError("target_fitness_max must be greater than or equal to target_fitness_min")
        return self

    def to_settings(self) -> GenerationSettingsBase:
        return GenerationSettingsBase(
            population_size=self.population_size,
            max_generations=self.max_generations,
            mutation_rate=self.mutation_rate,
            target_fitness_min=self.target_fitness_min,
            target_fitness_max=self.target_fitness_max,
            random_seed=self.random_seed,
            fitness_weights=self.fitness_weights or FitnessWeights(),
        )


class JobStartedOut(BaseModel):
    job_key: str


class JobProgressOut(BaseModel):
    progress: int = Field(ge=0, le=100)
    message: str
    status: JobStatus
    schedule_id: str | None = None
    updated_at: datetime | None = None


class ParallelSuggestionOut(BaseModel):
    subject_ids: list[str]
    subject_codes: list[str]
    title: str
