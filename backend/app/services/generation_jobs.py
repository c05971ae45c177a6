from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.exceptions import AppError, ResourceNotFoundError
from app.models.academic_setup import AcademicSetup
from app.schemas.generator import GenerateScheduleRequest
from app.services.job_store import JobProgress, JobProgressStore
from app.services.scheduling.controller import EvolutionController, progress_message, progress_percent
from app.services.scheduling.loader import load_scheduling_input
from app.services.scheduling.materializer import ScheduleMaterializer

logger = logging.getLogger(__name__)

INITIALIZING_MESSAGE = "Initializing..."

SessionFactory = Callable[[], Session]


class GenerationJobRunner:
    """Starts generation runs and reports their progress through a job store.

    In ``background`` mode runs go to a bounded worker pool and ``start``
    returns while the job is still pending. ``inline`` mode finishes the run
    before returning, which keeps tests and small deployments simple.
    """

    def __init__(
        self,
        store: JobProgressStore,
        session_factory: SessionFactory,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._executor: ThreadPoolExecutor | None = None
        self._lock = Lock()
        self._futures: dict[str, Future] = {}

    @property
    def inline(self) -> bool:
        return self.settings.generation_mode == "inline"

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.max_concurrent_jobs,
                    thread_name_prefix="generation",
                )
            return self._executor

    def start(self, request: GenerateScheduleRequest, *, created_by_id: str | None = None) -> JobProgress:
        with self.session_factory() as db:
            if db.get(AcademicSetup, request.academic_setup_id) is None:
                raise ResourceNotFoundError("Academic setup", request.academic_setup_id)

        snapshot = self.store.create()
        job_key = snapshot.job_key
        logger.info(
            "GENERATION JOB QUEUED | job_key=%s | setup_id=%s | population=%s | generations=%s | mode=%s",
            job_key,
            request.academic_setup_id,
            request.population_size,
            request.max_generations,
            self.settings.generation_mode,
        )
        if self.inline:
            self.run(job_key, request, created_by_id=created_by_id)
        else:
            future = self._pool().submit(self.run, job_key, request, created_by_id=created_by_id)
            with self._lock:
                self._futures[job_key] = future
            future.add_done_callback(lambda _: self._forget(job_key))
        return snapshot

    def _forget(self, job_key: str) -> None:
        with self._lock:
            self._futures.pop(job_key, None)

    def run(self, job_key: str, request: GenerateScheduleRequest, *, created_by_id: str | None = None) -> None:
        settings = self.settings

        def report(generation: int, max_generations: int, best_fitness: float) -> None:
            self.store.update(
                job_key,
                progress=progress_percent(generation, max_generations),
                message=progress_message(generation, max_generations, best_fitness),
            )

        try:
            self.store.update(job_key, progress=0, message=INITIALIZING_MESSAGE)
            with self.session_factory() as db:
                data = load_scheduling_input(
                    db,
                    request.academic_setup_id,
                    request.included_days,
                    contiguity_gap_minutes=settings.contiguity_gap_minutes,
                )
                generation_settings = request.to_settings()
                controller = EvolutionController(
                    data,
                    generation_settings,
                    evaluation_workers=settings.evaluation_workers,
                    parallel_evaluation_threshold=settings.parallel_evaluation_threshold,
                    max_repair_passes=settings.max_repair_passes,
                    overload_hard=settings.faculty_overload_hard,
                    progress_callback=report,
                )
                materializer = ScheduleMaterializer(
                    db,
                    controller.problem,
                    overload_hard=settings.faculty_overload_hard,
                )
                parameters = {
                    "population_size": generation_settings.population_size,
                    "max_generations": generation_settings.max_generations,
                    "mutation_rate": generation_settings.mutation_rate,
                    "random_seed": generation_settings.random_seed,
                    "job_key": job_key,
                }
                result = controller.run(
                    materialize=lambda outcome: materializer.materialize(
                        outcome,
                        name=request.name or f"Generated schedule ({job_key[-8:]})",
                        created_by_id=created_by_id,
                        parameters=parameters,
                    )
                )
                schedule_id = result.materialized.id
        except AppError as exc:
            self.store.fail(job_key, message=exc.message)
            return
        except Exception as exc:
            logger.exception("GENERATION JOB ERROR | job_key=%s", job_key)
            self.store.fail(job_key, message=f"Generation failed: {exc}")
            return

        self.store.complete(job_key, schedule_id=schedule_id)

    def wait(self, timeout: float | None = None) -> None:
        with self._lock:
            futures = list(self._futures.values())
        for future in futures:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)


_runner: GenerationJobRunner | None = None
_runner_lock = Lock()


def get_generation_runner(store: JobProgressStore, session_factory: SessionFactory) -> GenerationJobRunner:
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = GenerationJobRunner(store, session_factory)
        return _runner


def shutdown_generation_runner() -> None:
    global _runner
    with _runner_lock:
        runner, _runner = _runner, None
    if runner is not None:
        runner.shutdown(wait=False)
