"""Durable, priority-ordered automation job queue with claim/lease semantics.

The conditional ``UPDATE ... WHERE status = 'pending'`` in :meth:`claim_batch`
is the only place a job changes hands; every later transition is additionally
scoped to the worker that holds the claim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from prometheus_client import Counter, Gauge
from sqlalchemy import case, func, update
from sqlmodel import Session, select

from leadflow.core.config import QueueSettings
from leadflow.core.db import models
from leadflow.core.db.session import store_guard
from leadflow.core.db.upsert import insert_ignore
from leadflow.followups import FollowUpService
from leadflow.utils.retry import exponential_backoff

logger = logging.getLogger(__name__)

JOBS_ENQUEUED = Counter(
    "leadflow_jobs_enqueued_total",
    "Automation jobs enqueued.",
    ["job_type", "outcome"],
)
JOBS_CLAIMED = Counter(
    "leadflow_jobs_claimed_total",
    "Automation jobs claimed by workers.",
    ["job_type"],
)
JOBS_FINISHED = Counter(
    "leadflow_jobs_finished_total",
    "Automation job outcomes recorded by workers.",
    ["job_type", "outcome"],
)
JOBS_RECLAIMED = Counter(
    "leadflow_jobs_reclaimed_total",
    "Jobs returned to pending after their lease expired.",
)
QUEUE_DEPTH = Gauge(
    "leadflow_queue_depth",
    "Pending automation jobs.",
)


class JobType(str, Enum):
    AUTO_REPLY = "auto_reply"
    HANDOVER_NOTICE = "handover_notice"


@dataclass(slots=True)
class ClaimedJob:
    """Detached snapshot of a job owned by one worker."""

    id: UUID
    job_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 0

    @classmethod
    def from_model(cls, job: models.AutomationJob) -> ClaimedJob:
        return cls(
            id=job.id,
            job_type=job.job_type,
            payload=dict(job.payload or {}),
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            priority=job.priority,
        )


class JobQueue:
    """Queue operations consumed by the webhook path, the workers and the sweep."""

    def __init__(self, session: Session, settings: QueueSettings) -> None:
        self._session = session
        self._settings = settings

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        priority: int = 0,
        scheduled_at: datetime | None = None,
        idempotency_key: str | None = None,
        max_attempts: int | None = None,
    ) -> UUID:
        """Add a job and return its id.

        With ``idempotency_key`` the insert is atomic and a repeated call
        returns the existing job's id. The caller commits.
        """

        values = {
            "job_type": job_type,
            "status": models.AutomationJobStatus.PENDING.value,
            "priority": priority,
            "attempts": 0,
            "max_attempts": max_attempts or self._settings.max_attempts,
            "scheduled_at": scheduled_at or _utcnow(),
            "payload": payload,
            "idempotency_key": idempotency_key,
        }
        with store_guard():
            if idempotency_key is None:
                job = models.AutomationJob(**values)
                self._session.add(job)
                self._session.flush()
                JOBS_ENQUEUED.labels(job_type, "created").inc()
                return job.id

            created = insert_ignore(
                self._session,
                models.AutomationJob,
                values,
                conflict_columns=("idempotency_key",),
            )
            job_id = self._session.exec(
                select(models.AutomationJob.id).where(
                    models.AutomationJob.idempotency_key == idempotency_key
                )
            ).one()
        JOBS_ENQUEUED.labels(job_type, "created" if created else "duplicate").inc()
        if not created:
            logger.info(
                "queue.enqueue.duplicate",
                extra={"job_type": job_type, "idempotency_key": idempotency_key},
            )
        return job_id

    def claim_batch(
        self, worker_id: str, limit: int | None = None, *, now: datetime | None = None
    ) -> list[ClaimedJob]:
        """Move up to ``limit`` due jobs to ``processing`` for ``worker_id``."""

        now = now or _utcnow()
        limit = limit or self._settings.batch_size
        with store_guard():
            candidates = list(
                self._session.exec(
                    select(models.AutomationJob.id)
                    .where(
                        models.AutomationJob.status
                        == models.AutomationJobStatus.PENDING.value,
                        models.AutomationJob.scheduled_at <= now,
                    )
                    .order_by(
                        models.AutomationJob.priority.desc(),
                        models.AutomationJob.scheduled_at,
                        models.AutomationJob.created_at,
                    )
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
            )
            claimed_ids: list[UUID] = []
            for job_id in candidates:
                result = self._session.exec(
                    update(models.AutomationJob)
                    .where(
                        models.AutomationJob.id == job_id,
                        models.AutomationJob.status
                        == models.AutomationJobStatus.PENDING.value,
                    )
                    .values(
                        status=models.AutomationJobStatus.PROCESSING.value,
                        claimed_by=worker_id,
                        claimed_at=now,
                        attempts=models.AutomationJob.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    claimed_ids.append(job_id)
            self._session.commit()

            if not claimed_ids:
                return []
            rows = self._session.exec(
                select(models.AutomationJob)
                .where(models.AutomationJob.id.in_(claimed_ids))
                .execution_options(populate_existing=True)
            )
            by_id = {job.id: ClaimedJob.from_model(job) for job in rows}

        jobs = [by_id[job_id] for job_id in claimed_ids if job_id in by_id]
        for job in jobs:
            JOBS_CLAIMED.labels(job.job_type).inc()
        logger.debug("queue.claimed", extra={"worker_id": worker_id, "count": len(jobs)})
        return jobs

    def mark_completed(self, job_id: UUID, worker_id: str) -> bool:
        with store_guard():
            result = self._session.exec(
                self._owned(job_id, worker_id)
                .values(
                    status=models.AutomationJobStatus.COMPLETED.value,
                    completed_at=_utcnow(),
                    failure_reason=None,
                )
                .execution_options(synchronize_session=False)
            )
            self._session.commit()
        if not result.rowcount:
            logger.warning(
                "queue.complete.lost_claim",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return False
        return True

    def mark_failed(
        self,
        job_id: UUID,
        worker_id: str,
        reason: str,
        *,
        retryable: bool = True,
        now: datetime | None = None,
    ) -> str:
        """Record a failure; returns ``"retry"``, ``"failed"`` or ``"lost"``.

        Retryable failures under ``max_attempts`` go back to ``pending`` with
        exponential backoff. Everything else is terminal and opens a
        ``dispatch_failed`` follow-up task.
        """

        now = now or _utcnow()
        with store_guard():
            job = self._session.exec(
                select(models.AutomationJob)
                .where(
                    models.AutomationJob.id == job_id,
                    models.AutomationJob.status
                    == models.AutomationJobStatus.PROCESSING.value,
                    models.AutomationJob.claimed_by == worker_id,
                )
                .execution_options(populate_existing=True)
            ).first()
            if job is None:
                logger.warning(
                    "queue.fail.lost_claim",
                    extra={"job_id": str(job_id), "worker_id": worker_id},
                )
                return "lost"

            if retryable and job.attempts < job.max_attempts:
                delay = exponential_backoff(
                    job.attempts,
                    base=self._settings.backoff_base_seconds,
                    max_delay=self._settings.backoff_max_seconds,
                )
                values: dict[str, Any] = {
                    "status": models.AutomationJobStatus.PENDING.value,
                    "scheduled_at": now + timedelta(seconds=delay),
                    "claimed_by": None,
                    "claimed_at": None,
                    "failure_reason": reason,
                }
                outcome = "retry"
            else:
                values = {
                    "status": models.AutomationJobStatus.FAILED.value,
                    "completed_at": now,
                    "failure_reason": reason,
                }
                outcome = "failed"
                self._open_failure_task(job, reason)

            self._session.exec(
                self._owned(job_id, worker_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self._session.commit()

        JOBS_FINISHED.labels(job.job_type, outcome).inc()
        log = logger.warning if outcome == "retry" else logger.error
        log(
            "queue.job.failed",
            extra={
                "job_id": str(job_id),
                "job_type": job.job_type,
                "attempts": job.attempts,
                "outcome": outcome,
                "reason": reason,
            },
        )
        return outcome

    def requeue(
        self, job_id: UUID, worker_id: str, *, delay_seconds: float, now: datetime | None = None
    ) -> bool:
        """Return a claimed job to ``pending`` without consuming an attempt."""

        now = now or _utcnow()
        with store_guard():
            result = self._session.exec(
                self._owned(job_id, worker_id)
                .values(
                    status=models.AutomationJobStatus.PENDING.value,
                    scheduled_at=now + timedelta(seconds=delay_seconds),
                    claimed_by=None,
                    claimed_at=None,
                    attempts=case(
                        (models.AutomationJob.attempts > 0, models.AutomationJob.attempts - 1),
                        else_=0,
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            self._session.commit()
        return bool(result.rowcount)

    def reclaim_stale(
        self, lease_timeout: timedelta, *, now: datetime | None = None
    ) -> int:
        """Reset ``processing`` jobs whose lease expired (crashed workers).

        A job that already used all attempts is failed instead of reclaimed.
        """

        now = now or _utcnow()
        cutoff = now - lease_timeout
        stale = (
            models.AutomationJob.status == models.AutomationJobStatus.PROCESSING.value,
            models.AutomationJob.claimed_at < cutoff,
        )
        with store_guard():
            exhausted = list(
                self._session.exec(
                    select(models.AutomationJob).where(
                        *stale,
                        models.AutomationJob.attempts >= models.AutomationJob.max_attempts,
                    )
                )
            )
            for job in exhausted:
                result = self._session.exec(
                    update(models.AutomationJob)
                    .where(models.AutomationJob.id == job.id, *stale)
                    .values(
                        status=models.AutomationJobStatus.FAILED.value,
                        completed_at=now,
                        failure_reason="lease expired after final attempt",
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    self._open_failure_task(job, "lease expired after final attempt")

            result = self._session.exec(
                update(models.AutomationJob)
                .where(*stale)
                .values(
                    status=models.AutomationJobStatus.PENDING.value,
                    claimed_by=None,
                    claimed_at=None,
                    scheduled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            self._session.commit()

        reclaimed = result.rowcount or 0
        if reclaimed:
            JOBS_RECLAIMED.inc(reclaimed)
            logger.warning("queue.reclaimed", extra={"count": reclaimed})
        return reclaimed

    def pending_count(self) -> int:
        with store_guard():
            count = self._session.exec(
                select(func.count())
                .select_from(models.AutomationJob)
                .where(
                    models.AutomationJob.status == models.AutomationJobStatus.PENDING.value
                )
            ).one()
        QUEUE_DEPTH.set(count)
        return count

    def _owned(self, job_id: UUID, worker_id: str) -> Any:
        return update(models.AutomationJob).where(
            models.AutomationJob.id == job_id,
            models.AutomationJob.status == models.AutomationJobStatus.PROCESSING.value,
            models.AutomationJob.claimed_by == worker_id,
        )

    def _open_failure_task(self, job: models.AutomationJob, reason: str) -> None:
        payload = job.payload or {}
        conversation_id = payload.get("conversation_id")
        lead_id = payload.get("lead_id")
        FollowUpService(self._session).create_task(
            models.TaskKind.DISPATCH_FAILED,
            f"Automated {job.job_type} failed: {reason}",
            idempotency_key=f"dispatch_failed:job:{job.id}",
            conversation_id=UUID(conversation_id) if conversation_id else None,
            lead_id=UUID(lead_id) if lead_id else None,
            due_at=_utcnow(),
            details={"job_id": str(job.id), "job_type": job.job_type, "reason": reason},
        )


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)
