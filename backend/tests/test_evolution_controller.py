import threading

import pytest

from app.core.exceptions import InfeasibilityError, SchedulerError
from app.schemas.generator import GenerationSettingsBase
from app.services.scheduling.controller import (
    EvolutionController,
    EvolutionState,
    progress_message,
    progress_percent,
)
from app.services.scheduling.domain import (
    FacultyProfile,
    RoomSpec,
    SchedulingInput,
    SubjectBlock,
    TimeSlotSpec,
)


def make_slots(group, count=5):
    return tuple(
        TimeSlotSpec(id=f"{group}-{index}", day_group=group, name=f"{group} {index}", start=480 + index * 60, end=540 + index * 60)
        for index in range(count)
    )


def build_input(*, blocks=None, rooms=None, faculty=None, included_days=("MW", "TTH", "FRI")):
    blocks = blocks if blocks is not None else tuple(
        SubjectBlock(
            id=f"b{index}",
            subject_id=f"s{index}",
            subject_code=f"CSC {100 + index}",
            course_ids=("cs",),
            block_number=1 + index % 2,
        )
        for index in range(6)
    )
    return SchedulingInput(
        academic_setup_id="setup",
        blocks=blocks,
        faculty=faculty if faculty is not None else (
            FacultyProfile(user_id="f1", name="Ada", max_units=9, preferred_day_off="tuesday", preferred_time_period="morning"),
            FacultyProfile(user_id="f2", name="Grace", max_units=9, preferred_time_period="afternoon"),
        ),
        rooms=rooms if rooms is not None else (
            RoomSpec(id="r1", name="R1", room_type="lecture", capacity=40),
            RoomSpec(id="r2", name="R2", room_type="hybrid", capacity=40),
        ),
        time_slots=make_slots("MW") + make_slots("TTH") + make_slots("FRI"),
        included_days=included_days,
    )


def settings(**overrides):
    values = {"population_size": 12, "max_generations": 6, "mutation_rate": 0.2, "random_seed": 11}
    values.update(overrides)
    return GenerationSettingsBase(**values)


def test_progress_helpers():
    assert progress_percent(3, 20) == 15
    assert progress_percent(20, 20) == 100
    assert progress_message(3, 20, 97.5) == "Generation 3/20 - Best Fitness: 97.50"


def test_best_fitness_never_decreases_with_elitism():
    controller = EvolutionController(
        build_input(),
        settings(max_generations=8, target_fitness_min=1000.0),
    )

    result = controller.run()

    best = [stat.best_fitness for stat in result.history]
    assert len(best) == 8
    assert best == sorted(best)
    assert controller.state == EvolutionState.done
    assert result.converged is False
    assert result.generations_run == 8


def test_single_individual_single_generation_terminates():
    controller = EvolutionController(build_input(), settings(population_size=1, max_generations=1))

    result = controller.run()

    assert result.generations_run == 1
    assert len(result.history) == 1
    assert len(result.assignments) == 6
    assert controller.state == EvolutionState.done


def test_progress_callback_reports_every_generation_in_order():
    calls = []
    controller = EvolutionController(
        build_input(),
        settings(max_generations=5, target_fitness_min=1000.0),
        progress_callback=lambda generation, total, best: calls.append((generation, total, best)),
    )

    controller.run()

    assert [call[0] for call in calls] == [1, 2, 3, 4, 5]
    percents = [progress_percent(generation, total) for generation, total, _ in calls]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    fitness = [best for _, _, best in calls]
    assert fitness == sorted(fitness)


def test_converges_early_when_the_target_is_met():
    controller = EvolutionController(
        build_input(),
        settings(max_generations=50, target_fitness_min=-1_000_000.0, target_fitness_max=1000.0),
    )

    result = controller.run()

    assert result.converged is True
    assert result.generations_run == 1


def test_materialize_callback_runs_before_done():
    seen = []

    def materialize(result):
        seen.append(controller.state)
        return "schedule-id"

    controller = EvolutionController(build_input(), settings(max_generations=2))
    result = controller.run(materialize=materialize)

    assert seen == [EvolutionState.materializing]
    assert result.materialized == "schedule-id"


def test_no_rooms_is_infeasible_and_fails_the_run():
    controller = EvolutionController(build_input(rooms=()), settings())

    with pytest.raises(InfeasibilityError, match="No active rooms"):
        controller.run()

    assert controller.state == EvolutionState.failed
    assert controller.failure_message == "No active rooms available for scheduling"


def test_oversized_block_is_infeasible():
    blocks = (SubjectBlock(id="big", subject_id="s", subject_code="PE 1", expected_students=300),)

    with pytest.raises(InfeasibilityError, match="largest lecture room holds 40"):
        EvolutionController(build_input(blocks=blocks), settings()).run()


def test_lab_without_lab_room_is_infeasible():
    blocks = (SubjectBlock(id="l", subject_id="s", subject_code="CHM 1", needs_lab=True, lab_hours=3),)
    rooms = (RoomSpec(id="r1", name="R1", room_type="lecture", capacity=40),)

    with pytest.raises(InfeasibilityError, match="laboratory or hybrid"):
        EvolutionController(build_input(blocks=blocks, rooms=rooms), settings()).run()


def test_section_demand_beyond_available_slots_is_infeasible():
    blocks = tuple(
        SubjectBlock(id=f"b{index}", subject_id=f"s{index}", subject_code=f"CSC {index}", course_ids=("cs",))
        for index in range(3)
    )

    with pytest.raises(InfeasibilityError, match="Block 1 students need"):
        EvolutionController(build_input(blocks=blocks, included_days=("FRI",)), settings()).run()


def test_invalid_transition_is_rejected():
    controller = EvolutionController(build_input(), settings())

    with pytest.raises(SchedulerError, match="Invalid evolution state transition"):
        controller._transition(EvolutionState.done)


def test_cancelled_run_fails():
    cancel = threading.Event()
    cancel.set()
    controller = EvolutionController(build_input(), settings(), cancel_event=cancel)

    with pytest.raises(SchedulerError, match="cancelled"):
        controller.run()
    assert controller.state == EvolutionState.failed


def test_pooled_evaluation_matches_serial_evaluation():
    def run(**workers):
        controller = EvolutionController(build_input(), settings(population_size=16, max_generations=4), **workers)
        evaluate = controller.evaluator.evaluate
        threads = set()

        def recording_evaluate(chromosome):
            threads.add(threading.current_thread().name)
            return evaluate(chromosome)

        controller.evaluator.evaluate = recording_evaluate
        result = controller.run()
        assert controller._executor is None
        return result, threads

    serial, serial_threads = run(evaluation_workers=1)
    pooled, pooled_threads = run(evaluation_workers=4, parallel_evaluation_threshold=1)

    assert not any(name.startswith("fitness") for name in serial_threads)
    assert any(name.startswith("fitness") for name in pooled_threads)
    assert pooled.history == serial.history
    assert pooled.chromosome == serial.chromosome
    assert pooled.evaluation == serial.evaluation
    assert pooled.generations_run == serial.generations_run
