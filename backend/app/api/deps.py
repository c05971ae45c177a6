from collections.abc import Generator

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.generation_jobs import GenerationJobRunner, get_generation_runner
from app.services.job_store import JobProgressStore, get_job_store


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_progress_store() -> JobProgressStore:
    return get_job_store()


def get_job_runner() -> GenerationJobRunner:
    return get_generation_runner(get_job_store(), SessionLocal)
