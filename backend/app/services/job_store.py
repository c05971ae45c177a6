from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock

from app.core.config import get_settings
from app.core.exceptions import JobStateError

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "schedule_generation_"

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
NOT_FOUND = "not_found"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})
_STATUS_RANK = {PENDING: 0, RUNNING: 1, COMPLETED: 2, FAILED: 2}

QUEUED_MESSAGE = "Queued for processing..."
COMPLETE_MESSAGE = "Complete"
NOT_FOUND_MESSAGE = "Job not found or expired."


@dataclass(frozen=True)
class JobProgress:
    job_key: str
    progress: int
    message: str
    status: str
    schedule_id: str | None = None
    updated_at: datetime | None = None


@dataclass
class _JobRecord:
    snapshot: JobProgress
    created_at: float
    touched_at: float
    finished_at: float | None = None
    observed_at: float | None = None


class JobProgressStore:
    """Thread-safe progress records for generation jobs, keyed by job key.

    Readers always get an immutable snapshot. Progress never goes down and a
    job never leaves a terminal status. Finished jobs are dropped
    ``retention_seconds`` after a reader first saw them, or after
    ``unobserved_retention_seconds`` when nobody polled; jobs that stop
    reporting are dropped after ``active_ttl_seconds``.
    """

    def __init__(
        self,
        *,
        retention_seconds: int = 600,
        unobserved_retention_seconds: int = 3600,
        active_ttl_seconds: int = 6 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.unobserved_retention_seconds = unobserved_retention_seconds
        self.active_ttl_seconds = active_ttl_seconds
        self._clock = clock
        self._records: dict[str, _JobRecord] = {}
        self._lock = Lock()

    @staticmethod
    def new_job_key() -> str:
        return f"{JOB_KEY_PREFIX}{uuid.uuid4()}"

    def create(self, job_key: str | None = None) -> JobProgress:
        key = job_key or self.new_job_key()
        now = self._clock()
        snapshot = JobProgress(
            job_key=key,
            progress=0,
            message=QUEUED_MESSAGE,
            status=PENDING,
            updated_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._purge_locked(now)
            if key in self._records:
                raise JobStateError(f"Job {key} already exists", details={"job_key": key})
            self._records[key] = _JobRecord(snapshot=snapshot, created_at=now, touched_at=now)
        return snapshot

    def _write(
        self,
        job_key: str,
        *,
        status: str,
        progress: int | None = None,
        message: str | None = None,
        schedule_id: str | None = None,
    ) -> JobProgress:
        now = self._clock()
        with self._lock:
            record = self._records.get(job_key)
            if record is None:
                raise JobStateError(f"Job {job_key} not found or expired", details={"job_key": job_key})
            current = record.snapshot
            if current.status in TERMINAL_STATUSES:
                raise JobStateError(
                    f"Job {job_key} already {current.status}",
                    details={"job_key": job_key, "status": current.status, "requested": status},
                )
            if _STATUS_RANK[status] < _STATUS_RANK[current.status]:
                raise JobStateError(
                    f"Job {job_key} cannot move from {current.status} to {status}",
                    details={"job_key": job_key, "status": current.status, "requested": status},
                )
            next_progress = current.progress
            if progress is not None:
                next_progress = max(current.progress, min(100, max(0, int(progress))))
            record.snapshot = replace(
                current,
                progress=next_progress,
                message=message if message is not None else current.message,
                status=status,
                schedule_id=schedule_id if schedule_id is not None else current.schedule_id,
                updated_at=datetime.now(timezone.utc),
            )
            record.touched_at = now
            if status in TERMINAL_STATUSES:
                record.finished_at = now
            return record.snapshot

    def update(self, job_key: str, *, progress: int, message: str) -> JobProgress:
        return self._write(job_key, status=RUNNING, progress=progress, message=message)

    def complete(self, job_key: str, *, schedule_id: str, message: str = COMPLETE_MESSAGE) -> JobProgress:
        snapshot = self._write(job_key, status=COMPLETED, progress=100, message=message, schedule_id=schedule_id)
        logger.info("GENERATION JOB COMPLETED | job_key=%s | schedule_id=%s", job_key, schedule_id)
        return snapshot

    def fail(self, job_key: str, *, message: str) -> JobProgress:
        snapshot = self._write(job_key, status=FAILED, message=message)
        logger.warning("GENERATION JOB FAILED | job_key=%s | message=%s", job_key, message)
        return snapshot

    def get(self, job_key: str) -> JobProgress:
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            record = self._records.get(job_key)
            if record is None:
                return JobProgress(job_key=job_key, progress=0, message=NOT_FOUND_MESSAGE, status=NOT_FOUND)
            if record.finished_at is not None and record.observed_at is None:
                record.observed_at = now
            return record.snapshot

    def _expired(self, record: _JobRecord, now: float) -> bool:
        if record.finished_at is None:
            return now - record.touched_at > self.active_ttl_seconds
        if record.observed_at is not None:
            return now - record.observed_at > self.retention_seconds
        return now - record.finished_at > self.unobserved_retention_seconds

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, record in self._records.items() if self._expired(record, now)]
        for key in expired:
            del self._records[key]
        if expired:
            logger.info("GENERATION JOBS EVICTED | count=%s", len(expired))
        return len(expired)

    def purge(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


_store: JobProgressStore | None = None
_store_lock = Lock()


def get_job_store() -> JobProgressStore:
    global _store
    with _store_lock:
        if _store is None:
            settings = get_settings()
            _store = JobProgressStore(
                retention_seconds=settings.job_retention_seconds,
                unobserved_retention_seconds=settings.job_unobserved_retention_seconds,
                active_ttl_seconds=settings.job_active_ttl_seconds,
            )
        return _store
