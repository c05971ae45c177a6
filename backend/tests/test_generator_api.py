from sqlalchemy import select

from app.core.config import Settings
from app.models.schedule import ScheduleEntry
from app.schemas.generator import GenerateScheduleRequest
from app.services.generation_jobs import GenerationJobRunner


def seed_department(builder, *, subjects=5, blocks=2, day_off_faculty=False):
    for index in range(subjects):
        subject = builder.subject(f"CSC {101 + index}", name=f"Computing Topic {index}")
        for block_number in range(1, blocks + 1):
            builder.block(subject, block_number=block_number)
    builder.room("LEC 1")
    builder.room("LEC 2")
    builder.room("LEC 3")
    builder.weekly_slots()
    if day_off_faculty:
        builder.faculty("f-monday", "Ada Lovelace", preferred_day_off="monday", preferred_day_off_time="wholeday")
    else:
        builder.faculty("f1", "Ada Lovelace")
        builder.faculty("f2", "Grace Hopper")
    return builder.commit()


def start_generation(client, setup_id, **overrides):
    payload = {"academic_setup_id": setup_id, "random_seed": 42}
    payload.update(overrides)
    response = client.post("/api/schedules/generate", json=payload)
    assert response.status_code == 202, response.text
    return response.json()["job_key"]


def poll(client, job_key):
    response = client.get("/api/schedules/progress", params={"job_key": job_key})
    assert response.status_code == 200
    return response.json()


def test_generation_completes_without_collisions(client, builder):
    setup_id = seed_department(builder)

    job_key = start_generation(client, setup_id, population_size=50, max_generations=20, mutation_rate=0.3)
    progress = poll(client, job_key)

    assert progress["status"] == "completed", progress["message"]
    assert progress["progress"] == 100
    assert progress["message"] == "Complete"

    schedule = client.get(f"/api/schedules/{progress['schedule_id']}").json()
    entries = schedule["entries"]
    assert schedule["conflict_count"] == 0
    assert len({entry["academic_setup_subject_id"] for entry in entries}) == 10
    assert not any(entry["has_conflict"] for entry in entries)

    rooms = [(entry["day"], entry["time_slot_id"], entry["room_id"]) for entry in entries]
    assert len(rooms) == len(set(rooms))
    faculty = [(entry["day"], entry["time_slot_id"], entry["user_id"]) for entry in entries]
    assert len(faculty) == len(set(faculty))
    assert schedule["generation_metadata"]["population_size"] == 50
    assert schedule["generation_metadata"]["hard_conflicts"] == 0


def test_whole_day_off_is_respected(client, builder):
    setup_id = seed_department(builder, subjects=1, day_off_faculty=True)

    job_key = start_generation(client, setup_id, population_size=20, max_generations=10)
    progress = poll(client, job_key)
    assert progress["status"] == "completed", progress["message"]

    entries = client.get(f"/api/schedules/{progress['schedule_id']}").json()["entries"]
    assert entries
    assert {entry["user_id"] for entry in entries} == {"f-monday"}
    assert not [entry for entry in entries if entry["day"] == "monday"]


def test_unknown_job_key_reports_not_found(client):
    progress = poll(client, "schedule_generation_unknown")

    assert progress["status"] == "not_found"
    assert progress["progress"] == 0
    assert progress["message"] == "Job not found or expired."


def test_invalid_generation_requests_are_rejected(client, builder):
    setup_id = seed_department(builder, subjects=1, blocks=1)

    empty_days = client.post("/api/schedules/generate", json={"academic_setup_id": setup_id, "included_days": []})
    assert empty_days.status_code == 422
    bad_rate = client.post("/api/schedules/generate", json={"academic_setup_id": setup_id, "mutation_rate": 1.5})
    assert bad_rate.status_code == 422
    bad_targets = client.post(
        "/api/schedules/generate",
        json={"academic_setup_id": setup_id, "target_fitness_min": 90, "target_fitness_max": 10},
    )
    assert bad_targets.status_code == 422

    missing = client.post("/api/schedules/generate", json={"academic_setup_id": "no-such-setup"})
    assert missing.status_code == 404
    assert missing.json()["message"] == "Academic setup with id no-such-setup not found"


def test_infeasible_input_fails_the_job(client, builder):
    subject = builder.subject("CSC 101")
    builder.block(subject)
    builder.weekly_slots()
    setup_id = builder.commit()

    progress = poll(client, start_generation(client, setup_id))

    assert progress["status"] == "failed"
    assert progress["message"] == "No active rooms available for scheduling"


def test_generation_defaults(client):
    defaults = client.get("/api/schedules/generation-defaults").json()

    assert defaults["population_size"] == 50
    assert defaults["fitness_weights"]["fitness_ceiling"] == 100.0


def test_background_runner_reports_pending_then_completes(session_factory, job_store, builder):
    setup_id = seed_department(builder, subjects=2, blocks=1)
    runner = GenerationJobRunner(
        job_store,
        session_factory,
        settings=Settings(generation_mode="background", max_concurrent_jobs=1, evaluation_workers=1),
    )
    try:
        snapshot = runner.start(
            GenerateScheduleRequest(academic_setup_id=setup_id, population_size=8, max_generations=3, random_seed=3)
        )
        assert snapshot.status == "pending"
        assert snapshot.message == "Queued for processing..."
        runner.wait(timeout=60)
    finally:
        runner.shutdown()

    finished = job_store.get(snapshot.job_key)
    assert finished.status == "completed"
    assert finished.schedule_id is not None


def test_hard_faculty_overload_flags_every_entry(session_factory, job_store, builder, db_session):
    for code in ("CSC 101", "MAT 101"):
        builder.block(builder.subject(code, units=3))
    builder.room("LEC 1")
    builder.weekly_slots()
    builder.faculty("f1", "Ada Lovelace", max_units=3)
    setup_id = builder.commit()
    runner = GenerationJobRunner(
        job_store,
        session_factory,
        settings=Settings(generation_mode="inline", evaluation_workers=1, faculty_overload_hard=True),
    )
    try:
        snapshot = runner.start(
            GenerateScheduleRequest(academic_setup_id=setup_id, population_size=8, max_generations=3, random_seed=3)
        )
    finally:
        runner.shutdown()

    finished = job_store.get(snapshot.job_key)
    assert finished.status == "completed", finished.message
    entries = db_session.execute(
        select(ScheduleEntry).where(ScheduleEntry.schedule_id == finished.schedule_id)
    ).scalars().all()
    assert entries
    for entry in entries:
        assert entry.user_id == "f1"
        assert entry.has_conflict is True
        assert "Faculty load of 6 units exceeds maximum of 3" in entry.conflict_reason


def test_failure_before_generation_starts_fails_the_job(session_factory, job_store, inline_settings, builder, monkeypatch):
    setup_id = seed_department(builder, subjects=1, blocks=1)
    runner = GenerationJobRunner(job_store, session_factory, settings=inline_settings)

    def unavailable(job_key, **_kwargs):
        raise RuntimeError("progress store unavailable")

    monkeypatch.setattr(job_store, "update", unavailable)
    try:
        snapshot = runner.start(GenerateScheduleRequest(academic_setup_id=setup_id, population_size=8, max_generations=3))
    finally:
        runner.shutdown()

    failed = job_store.get(snapshot.job_key)
    assert failed.status == "failed"
    assert failed.message == "Generation failed: progress store unavailable"


def test_schedule_editing_endpoints(client, builder):
    setup_id = seed_department(builder, subjects=2, blocks=1)
    progress = poll(client, start_generation(client, setup_id, population_size=10, max_generations=5))
    schedule_id = progress["schedule_id"]

    listed = client.get("/api/schedules/", params={"academic_setup_id": setup_id}).json()
    assert [item["id"] for item in listed] == [schedule_id]

    entries = client.get(f"/api/schedules/{schedule_id}").json()["entries"]
    first, second = entries[0], next(e for e in entries if e["session_group_id"] != entries[0]["session_group_id"])

    moved = client.patch(
        f"/api/schedules/{schedule_id}/entries/{second['id']}",
        json={"day": first["day"].upper(), "time_slot_id": first["time_slot_id"], "room_id": first["room_id"]},
    )
    assert moved.status_code == 200, moved.text
    assert moved.json()["has_conflict"] is True
    assert moved.json()["conflict_reason"]

    bad_day = client.patch(
        f"/api/schedules/{schedule_id}/entries/{second['id']}",
        json={"day": "someday", "time_slot_id": first["time_slot_id"], "room_id": first["room_id"]},
    )
    assert bad_day.status_code == 422

    refreshed = client.post(f"/api/schedules/{schedule_id}/refresh-faculty")
    assert refreshed.status_code == 200
    assert refreshed.json()["message"].startswith("Schedule updated:")

    published = client.post(f"/api/schedules/{schedule_id}/publish").json()
    assert published["status"] == "published"
    assert published["conflict_count"] >= 1


def test_parallel_suggestions(client, builder):
    builder.subject("CSC 101", name="Introduction to Computing")
    builder.subject("ITP 301", name="Introduction to Computing (ITP)", course="BSIT")
    builder.subject("ART 101", name="Art Appreciation", course=None)
    builder.commit()

    response = client.get("/api/subjects/parallel-suggestions")

    assert response.status_code == 200
    suggestions = response.json()
    assert [item["subject_codes"] for item in suggestions] == [["CSC 101", "ITP 301"]]
    assert suggestions[0]["title"]
