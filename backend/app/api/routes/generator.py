import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_job_runner, get_progress_store
from app.models.course import Subject
from app.schemas.generator import (
    GenerateScheduleRequest,
    GenerationSettingsBase,
    JobProgressOut,
    JobStartedOut,
    ParallelSuggestionOut,
)
from app.services.generation_jobs import GenerationJobRunner
from app.services.job_store import JobProgressStore
from app.services.scheduling.parallel_titles import common_descriptive_title, suggest_parallel_groups

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/schedules/generation-defaults", response_model=GenerationSettingsBase)
def generation_defaults() -> GenerationSettingsBase:
    return GenerationSettingsBase()


@router.post("/schedules/generate", response_model=JobStartedOut, status_code=status.HTTP_202_ACCEPTED)
def generate_schedule(
    payload: GenerateScheduleRequest,
    runner: GenerationJobRunner = Depends(get_job_runner),
) -> JobStartedOut:
    snapshot = runner.start(payload)
    return JobStartedOut(job_key=snapshot.job_key)


@router.get("/schedules/progress", response_model=JobProgressOut)
def generation_progress(
    job_key: str = Query(min_length=1, max_length=100),
    store: JobProgressStore = Depends(get_progress_store),
) -> JobProgressOut:
    snapshot = store.get(job_key)
    return JobProgressOut(
        progress=snapshot.progress,
        message=snapshot.message,
        status=snapshot.status,
        schedule_id=snapshot.schedule_id,
        updated_at=snapshot.updated_at,
    )


@router.get("/subjects/parallel-suggestions", response_model=list[ParallelSuggestionOut])
def parallel_suggestions(
    threshold: float = Query(default=0.6, gt=0.0, le=1.0),
    db: Session = Depends(get_db),
) -> list[ParallelSuggestionOut]:
    subjects = list(db.execute(select(Subject).order_by(Subject.code)).scalars())
    by_id = {subject.id: subject for subject in subjects}
    groups = suggest_parallel_groups(((subject.id, subject.name) for subject in subjects), threshold=threshold)
    logger.info("PARALLEL SUGGESTIONS | subjects=%s | groups=%s", len(subjects), len(groups))
    return [
        ParallelSuggestionOut(
            subject_ids=list(group),
            subject_codes=[by_id[subject_id].code for subject_id in group],
            title=common_descriptive_title([by_id[subject_id].name for subject_id in group]),
        )
        for group in groups
    ]
