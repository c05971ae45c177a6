import pytest
from pydantic import ValidationError

from app.schemas.generator import FitnessWeights
from app.services.scheduling.constraints import Booking, ClashIndex
from app.services.scheduling.domain import (
    FacultyProfile,
    Placement,
    RoomSpec,
    SchedulingInput,
    SchedulingProblem,
    SubjectBlock,
    TimeSlotSpec,
)
from app.services.scheduling.fitness import FitnessEvaluator


def make_slots(group, count=5):
    return tuple(
        TimeSlotSpec(id=f"{group}-{index}", day_group=group, name=f"{group} {index}", start=480 + index * 60, end=540 + index * 60)
        for index in range(count)
    )


def build_problem(*, faculty=None, blocks=None, rooms=None):
    blocks = blocks or (
        SubjectBlock(id="a1", subject_id="sa", subject_code="CSC 101", course_ids=("cs",), block_number=1),
        SubjectBlock(id="a2", subject_id="sa", subject_code="CSC 101", course_ids=("cs",), block_number=2),
    )
    return SchedulingProblem(
        SchedulingInput(
            academic_setup_id="setup",
            blocks=blocks,
            faculty=faculty or (
                FacultyProfile(user_id="f1", name="Ada", max_units=24),
                FacultyProfile(user_id="f2", name="Grace", max_units=24),
            ),
            rooms=rooms or (
                RoomSpec(id="r1", name="R1", room_type="lecture", capacity=40),
                RoomSpec(id="r2", name="R2", room_type="lecture", capacity=40),
                RoomSpec(id="lab", name="Lab", room_type="laboratory", capacity=40),
            ),
            time_slots=make_slots("MW") + make_slots("TTH"),
            included_days=("MW", "TTH"),
        )
    )


def test_clean_timetable_scores_the_ceiling():
    evaluator = FitnessEvaluator(build_problem())
    result = evaluator.evaluate(
        (
            Placement("MW", "MW-0", "r1", "f1"),
            Placement("MW", "MW-1", "r1", "f1"),
        )
    )
    assert result.hard_conflicts == 0
    assert result.fitness == pytest.approx(100.0)
    assert result.breakdown == {}


def test_room_double_booking_is_a_hard_conflict():
    evaluator = FitnessEvaluator(build_problem())
    result = evaluator.evaluate(
        (
            Placement("MW", "MW-0", "r1", "f1"),
            Placement("MW", "MW-0", "r1", "f2"),
        )
    )
    assert result.breakdown["room_conflict"] == 2  # monday and wednesday
    assert result.hard_conflicts == 2
    assert result.fitness < 0


def test_same_faculty_and_section_clashes_are_counted():
    blocks = (
        SubjectBlock(id="a1", subject_id="sa", subject_code="CSC 101", course_ids=("cs",)),
        SubjectBlock(id="b1", subject_id="sb", subject_code="MAT 101", course_ids=("cs",)),
    )
    evaluator = FitnessEvaluator(build_problem(blocks=blocks))
    result = evaluator.evaluate(
        (
            Placement("TTH", "TTH-2", "r1", "f1"),
            Placement("TTH", "TTH-2", "r2", "f1"),
        )
    )
    assert result.breakdown["faculty_conflict"] == 2
    assert result.breakdown["section_conflict"] == 2
    assert "room_conflict" not in result.breakdown


def test_any_hard_violation_scores_below_every_clean_timetable():
    faculty = (
        FacultyProfile(
            user_id="f1",
            name="Ada",
            max_units=3,
            preferred_day_off="monday",
            preferred_time_period="afternoon",
        ),
    )
    evaluator = FitnessEvaluator(build_problem(faculty=faculty))
    # Day off and load preferences broken, no hard violation.
    worst_soft = evaluator.evaluate(
        (
            Placement("MW", "MW-0", "r1", "f1"),
            Placement("MW", "MW-4", "r2", "f1"),
        )
    )
    clash = evaluator.evaluate(
        (
            Placement("TTH", "TTH-0", "r1", None),
            Placement("TTH", "TTH-0", "r1", None),
        )
    )
    assert worst_soft.hard_conflicts == 0
    assert worst_soft.fitness < 100.0
    assert clash.hard_conflicts > 0
    assert clash.fitness < worst_soft.fitness


def test_room_type_and_capacity_violations():
    blocks = (
        SubjectBlock(id="a1", subject_id="sa", subject_code="CSC 101", expected_students=60),
    )
    evaluator = FitnessEvaluator(build_problem(blocks=blocks))
    result = evaluator.evaluate((Placement("MW", "MW-0", "lab", "f1"),))

    assert result.breakdown["room_type"] == 1
    assert result.breakdown["room_capacity"] == 1


def test_overload_is_soft_unless_configured_hard():
    faculty = (FacultyProfile(user_id="f1", name="Ada", max_units=3),)
    problem = build_problem(faculty=faculty)
    chromosome = (
        Placement("MW", "MW-0", "r1", "f1"),
        Placement("MW", "MW-1", "r1", "f1"),
    )

    soft = FitnessEvaluator(problem).evaluate(chromosome)
    hard = FitnessEvaluator(problem, overload_hard=True).evaluate(chromosome)

    assert soft.hard_conflicts == 0
    assert soft.fitness < 100.0
    assert hard.breakdown["faculty_overload"] == 1


def test_evaluation_is_memoised_and_deterministic():
    evaluator = FitnessEvaluator(build_problem())
    chromosome = (
        Placement("MW", "MW-0", "r1", "f1"),
        Placement("TTH", "TTH-3", "r2", "f2"),
    )
    first = evaluator.evaluate(chromosome)
    assert evaluator.evaluate(chromosome) is first
    assert FitnessEvaluator(build_problem()).evaluate(chromosome) == first


def test_hard_weights_must_exceed_the_ceiling():
    with pytest.raises(ValidationError):
        FitnessWeights(fitness_ceiling=100.0, room_conflict=50)


def test_clash_index_reports_reasons_for_other_owners_only():
    index = ClashIndex()
    first = Booking(owner="s1", day="monday", time_slot_id="t1", room_id="r1", faculty_id="f1",
                    section_keys=frozenset({("cs", 1, 1)}), label="CSC10101", faculty_label="Ada")
    same_owner = Booking(owner="s1", day="monday", time_slot_id="t1", room_id="r1", faculty_id="f1",
                         section_keys=frozenset({("cs", 1, 1)}), label="CSC10101", faculty_label="Ada")
    other = Booking(owner="s2", day="monday", time_slot_id="t1", room_id="r1", faculty_id="f1",
                    section_keys=frozenset({("cs", 1, 1)}), label="MAT10101", faculty_label="Ada")
    index.add(first)
    index.add(same_owner)
    assert index.counts() == {}
    assert index.is_free(other) is False

    index.add(other)
    assert index.reasons_for(first) == [
        "Room is occupied by MAT10101 (Ada)",
        "Faculty is already teaching MAT10101 at this time",
        "Students (Block 1) have MAT10101",
    ]
