import pytest
from sqlalchemy import select

from app.core.exceptions import ResourceNotFoundError, ValidationError
from app.models.room import RoomType
from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus
from app.models.time_slot import DayGroup, TimeSlot
from app.schemas.generator import GenerateScheduleRequest
from app.services import schedule_editing
from app.services.generation_jobs import GenerationJobRunner
from app.services.schedule_editing import ScheduleEditor


@pytest.fixture()
def generate(session_factory, job_store, inline_settings):
    runner = GenerationJobRunner(job_store, session_factory, settings=inline_settings)

    def run(setup_id, **overrides):
        values = {
            "academic_setup_id": setup_id,
            "population_size": 10,
            "max_generations": 5,
            "mutation_rate": 0.2,
            "random_seed": 5,
        }
        values.update(overrides)
        snapshot = runner.start(GenerateScheduleRequest(**values))
        progress = job_store.get(snapshot.job_key)
        assert progress.status == "completed", progress.message
        return progress.schedule_id

    yield run
    runner.shutdown()


def entries_for(db, schedule_id):
    db.expire_all()
    return list(
        db.execute(select(ScheduleEntry).where(ScheduleEntry.schedule_id == schedule_id)).scalars().all()
    )


def test_lab_spanning_two_slots_is_one_contiguous_session(builder, db_session, generate):
    chemistry = builder.subject("CHM 101", lecture_hours=1, lab_hours=2)
    builder.block(chemistry, needs_lab=True)
    builder.room("LEC 1")
    lab_room = builder.room("LAB 1", room_type=RoomType.laboratory)
    builder.weekly_slots(groups=(DayGroup.FRI,))
    builder.faculty("f1", "Ada Lovelace")
    setup_id = builder.commit()

    schedule_id = generate(setup_id, included_days=["FRI"])

    entries = entries_for(db_session, schedule_id)
    lab = [entry for entry in entries if entry.is_lab_session]
    lecture = [entry for entry in entries if not entry.is_lab_session]
    assert len(lab) == 2
    assert len(lecture) == 1
    assert {entry.room_id for entry in lab} == {lab_room.id}
    assert len({entry.session_group_id for entry in lab}) == 1
    assert {entry.slots_span for entry in lab} == {2}
    assert {entry.day for entry in lab} == {"friday"}
    assert lecture[0].session_group_id != lab[0].session_group_id

    slots = sorted((db_session.get(TimeSlot, entry.time_slot_id) for entry in lab), key=lambda slot: slot.start_time)
    assert slots[0].end_time == slots[1].start_time
    assert not any(entry.has_conflict for entry in entries)


def test_parallel_subjects_share_one_assignment(builder, db_session, generate):
    csc = builder.subject("CSC 101", name="Introduction to Computing")
    itp = builder.subject("ITP 301", name="Introduction to Computing", course="BSIT")
    csc_block = builder.block(csc, courses=("BSCS",), parallel_with=(itp,))
    itp_block = builder.block(itp, courses=("BSIT",))
    builder.room("LEC 1", capacity=80)
    builder.weekly_slots()
    builder.faculty("f1", "Ada Lovelace")
    setup_id = builder.commit()

    schedule_id = generate(setup_id)

    entries = entries_for(db_session, schedule_id)
    assert {entry.academic_setup_subject_id for entry in entries} == {csc_block.id, itp_block.id}
    assert len({entry.session_group_id for entry in entries}) == 1
    assert {entry.parallel_display_code for entry in entries} == {"CSC10101/ITP30101"}
    assert {entry.display_code for entry in entries} == {"CSC10101", "ITP30101"}

    def cells(block_id):
        return sorted(
            (entry.day, entry.time_slot_id, entry.room_id, entry.user_id)
            for entry in entries
            if entry.academic_setup_subject_id == block_id
        )

    assert cells(csc_block.id) == cells(itp_block.id)
    assert not any(entry.has_conflict for entry in entries)


@pytest.fixture()
def two_subject_schedule(builder, generate):
    first = builder.subject("CSC 101")
    second = builder.subject("MAT 101")
    first_block = builder.block(first)
    second_block = builder.block(second)
    builder.room("LEC 1")
    builder.room("LEC 2")
    slots = builder.weekly_slots()
    teacher = builder.faculty("f1", "Ada Lovelace")
    setup_id = builder.commit()
    schedule_id = generate(setup_id)
    return {
        "schedule_id": schedule_id,
        "first_block": first_block,
        "second_block": second_block,
        "slots": slots,
        "faculty": teacher,
    }


def test_move_onto_an_occupied_cell_commits_and_flags(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    entries = entries_for(db_session, schedule_id)
    target = next(e for e in entries if e.academic_setup_subject_id == two_subject_schedule["first_block"].id)
    moving = next(e for e in entries if e.academic_setup_subject_id == two_subject_schedule["second_block"].id)

    moved = ScheduleEditor(db_session).propose_move(
        schedule_id,
        moving.id,
        day=target.day,
        time_slot_id=target.time_slot_id,
        room_id=target.room_id,
    )

    assert moved.day == target.day
    assert moved.time_slot_id == target.time_slot_id
    assert moved.room_id == target.room_id
    assert moved.has_conflict is True
    assert "Room is occupied by CSC10101" in moved.conflict_reason
    assert "Students (Block 1) have CSC10101" in moved.conflict_reason

    db_session.expire_all()
    assert db_session.get(ScheduleEntry, target.id).has_conflict is True


def test_move_between_day_groups_keeps_weekly_minutes(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    slots = two_subject_schedule["slots"]
    editor = ScheduleEditor(db_session)
    entry = next(
        e for e in entries_for(db_session, schedule_id)
        if e.academic_setup_subject_id == two_subject_schedule["second_block"].id
    )

    editor.propose_move(schedule_id, entry.id, day="friday", time_slot_id=slots["FRI"][0].id, room_id=entry.room_id)
    session = [e for e in entries_for(db_session, schedule_id) if e.session_group_id == entry.session_group_id]
    assert sorted((e.day, e.time_slot_id) for e in session) == sorted(
        ("friday", slot.id) for slot in slots["FRI"][:2]
    )
    assert {e.slots_span for e in session} == {2}

    editor.propose_move(schedule_id, entry.id, day="Wednesday", time_slot_id=slots["MW"][3].id, room_id=entry.room_id)
    session = [e for e in entries_for(db_session, schedule_id) if e.session_group_id == entry.session_group_id]
    assert sorted(e.day for e in session) == ["monday", "wednesday"]
    assert {e.time_slot_id for e in session} == {slots["MW"][3].id}
    assert {e.slots_span for e in session} == {1}


def test_move_past_the_end_of_the_day_is_flagged_and_keeps_its_length(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    slots = two_subject_schedule["slots"]
    editor = ScheduleEditor(db_session)
    entry = next(
        e for e in entries_for(db_session, schedule_id)
        if e.academic_setup_subject_id == two_subject_schedule["second_block"].id
    )

    editor.propose_move(schedule_id, entry.id, day="friday", time_slot_id=slots["FRI"][-1].id, room_id=entry.room_id)
    session = [e for e in entries_for(db_session, schedule_id) if e.session_group_id == entry.session_group_id]
    assert len(session) == 1
    moved = session[0]
    assert moved.has_conflict is True
    assert "Session does not fit in contiguous time slots" in moved.conflict_reason
    assert (moved.custom_start_time, moved.custom_end_time) == ("14:00", "16:00")

    editor.propose_move(schedule_id, entry.id, day="monday", time_slot_id=slots["MW"][3].id, room_id=entry.room_id)
    session = [e for e in entries_for(db_session, schedule_id) if e.session_group_id == entry.session_group_id]
    assert sorted(e.day for e in session) == ["monday", "wednesday"]
    assert {e.slots_span for e in session} == {1}
    assert {(e.custom_start_time, e.custom_end_time) for e in session} == {(None, None)}


def test_schedule_locks_are_released_after_edits(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    slots = two_subject_schedule["slots"]
    entry = entries_for(db_session, schedule_id)[0]

    with schedule_editing.schedule_lock(schedule_id):
        assert schedule_id in schedule_editing._schedule_locks

    ScheduleEditor(db_session).propose_move(
        schedule_id, entry.id, day="friday", time_slot_id=slots["FRI"][0].id, room_id=entry.room_id
    )
    assert schedule_editing._schedule_locks == {}


def test_move_validates_targets(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    slots = two_subject_schedule["slots"]
    editor = ScheduleEditor(db_session)
    entry = entries_for(db_session, schedule_id)[0]

    with pytest.raises(ValidationError):
        editor.propose_move(schedule_id, entry.id, day="tuesday", time_slot_id=slots["MW"][0].id, room_id=entry.room_id)
    with pytest.raises(ResourceNotFoundError):
        editor.propose_move(schedule_id, "missing", day="monday", time_slot_id=slots["MW"][0].id, room_id=entry.room_id)
    with pytest.raises(ResourceNotFoundError):
        editor.propose_move(schedule_id, entry.id, day="monday", time_slot_id=slots["MW"][0].id, room_id="missing")


def test_faculty_refresh_reassigns_without_moving_sessions(db_session, builder, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    before = {
        e.id: (e.day, e.time_slot_id, e.room_id) for e in entries_for(db_session, schedule_id)
    }
    two_subject_schedule["faculty"].is_active = False
    replacement = builder.faculty("f2", "Grace Hopper")
    builder.commit()

    result = ScheduleEditor(db_session).refresh_faculty(schedule_id)

    assert result.message == "Schedule updated: 2 faculty assigned, 0 set to TBA"
    assert result.updated_count == 2
    assert result.removed_count == 2
    after = entries_for(db_session, schedule_id)
    assert {e.user_id for e in after} == {replacement.user_id}
    assert {e.id: (e.day, e.time_slot_id, e.room_id) for e in after} == before


def test_faculty_refresh_without_faculty_sets_tba(db_session, two_subject_schedule):
    schedule_id = two_subject_schedule["schedule_id"]
    two_subject_schedule["faculty"].is_active = False
    db_session.commit()

    result = ScheduleEditor(db_session).refresh_faculty(schedule_id)

    assert result.message == "Schedule updated: 0 faculty assigned, 2 set to TBA"
    assert {e.user_id for e in entries_for(db_session, schedule_id)} == {None}


def test_publish_marks_schedule_published(db_session, two_subject_schedule):
    schedule = ScheduleEditor(db_session).publish(two_subject_schedule["schedule_id"])

    assert schedule.status == ScheduleStatus.published
    assert schedule.published_at is not None
    with pytest.raises(ResourceNotFoundError):
        ScheduleEditor(db_session).publish("missing")
    assert db_session.get(Schedule, schedule.id).status == ScheduleStatus.published
