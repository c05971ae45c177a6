import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db, get_job_runner, get_progress_store
from app.core.config import Settings
from app.db.base import Base
from app.main import app
from app.models.academic_setup import AcademicSetup, AcademicSetupFaculty, AcademicSetupSubject
from app.models.course import Course, Subject
from app.models.room import Room, RoomType
from app.models.time_slot import DayGroup, TimeSlot
from app.services.generation_jobs import GenerationJobRunner
from app.services.job_store import JobProgressStore


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def job_store():
    return JobProgressStore()


@pytest.fixture()
def inline_settings():
    return Settings(generation_mode="inline", evaluation_workers=1)


@pytest.fixture()
def client(session_factory, job_store, inline_settings):
    runner = GenerationJobRunner(job_store, session_factory, settings=inline_settings)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_progress_store] = lambda: job_store
    app.dependency_overrides[get_job_runner] = lambda: runner

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    runner.shutdown()


class SetupBuilder:
    """Seeds one academic setup with courses, subjects, rooms, slots and faculty."""

    def __init__(self, db):
        self.db = db
        self.setup = AcademicSetup(name="AY 2026-2027 1st", academic_year="2026-2027", semester="1st")
        db.add(self.setup)
        db.flush()
        self._courses: dict[str, Course] = {}
        self._subjects: dict[str, Subject] = {}

    def course(self, code: str) -> Course:
        if code not in self._courses:
            course = Course(code=code, name=code)
            self.db.add(course)
            self.db.flush()
            self._courses[code] = course
        return self._courses[code]

    def subject(
        self,
        code: str,
        *,
        name: str | None = None,
        course: str | None = "BSCS",
        units: int = 3,
        lecture_hours: int = 2,
        lab_hours: int = 0,
    ) -> Subject:
        subject = Subject(
            code=code,
            name=name or f"Subject {code}",
            units=units,
            lecture_hours=lecture_hours,
            lab_hours=lab_hours,
            course_id=self.course(course).id if course else None,
        )
        self.db.add(subject)
        self.db.flush()
        self._subjects[code] = subject
        return subject

    def block(
        self,
        subject: Subject,
        *,
        courses: tuple[str, ...] = ("BSCS",),
        year_level: int = 1,
        block_number: int = 1,
        expected_students: int = 30,
        needs_lab: bool = False,
        parallel_with: tuple[Subject, ...] = (),
        assigned_faculty_id: str | None = None,
    ) -> AcademicSetupSubject:
        course_ids = sorted(self.course(code).id for code in courses)
        row = AcademicSetupSubject(
            academic_setup_id=self.setup.id,
            subject_id=subject.id,
            course_ids=course_ids,
            course_key=",".join(course_ids),
            year_level=year_level,
            block_number=block_number,
            expected_students=expected_students,
            needs_lab=needs_lab,
            parallel_subject_ids=[item.id for item in parallel_with],
            assigned_faculty_id=assigned_faculty_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def room(self, name: str, *, room_type: RoomType = RoomType.lecture, capacity: int = 40, priority: int = 0) -> Room:
        room = Room(name=name, room_type=room_type, capacity=capacity, priority=priority)
        self.db.add(room)
        self.db.flush()
        return room

    def slots(self, day_group: DayGroup, starts: list[str], *, minutes: int = 60) -> list[TimeSlot]:
        created = []
        for start in starts:
            hours, mins = (int(part) for part in start.split(":"))
            end_total = hours * 60 + mins + minutes
            slot = TimeSlot(
                name=f"{day_group.value} {start}",
                day_group=day_group,
                start_time=start,
                end_time=f"{end_total // 60:02d}:{end_total % 60:02d}",
            )
            self.db.add(slot)
            created.append(slot)
        self.db.flush()
        return created

    def weekly_slots(self, starts=("08:00", "09:00", "10:00", "13:00", "14:00"), groups=(DayGroup.MW, DayGroup.TTH, DayGroup.FRI)):
        return {group.value: self.slots(group, list(starts)) for group in groups}

    def faculty(
        self,
        user_id: str,
        name: str,
        *,
        max_units: int = 24,
        preferred_day_off: str | None = None,
        preferred_day_off_time: str = "wholeday",
        preferred_time_period: str | None = None,
    ) -> AcademicSetupFaculty:
        row = AcademicSetupFaculty(
            academic_setup_id=self.setup.id,
            user_id=user_id,
            display_name=name,
            max_units=max_units,
            preferred_day_off=preferred_day_off,
            preferred_day_off_time=preferred_day_off_time,
            preferred_time_period=preferred_time_period,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def commit(self) -> str:
        self.db.commit()
        return self.setup.id


@pytest.fixture()
def builder(db_session):
    return SetupBuilder(db_session)

