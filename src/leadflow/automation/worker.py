"""Worker pool consuming the automation job queue."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from prometheus_client import Histogram, start_http_server
from sqlalchemy.engine import Engine

from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.db.session import session_scope
from leadflow.core.domain import ChannelType
from leadflow.core.errors import DispatchLockBusy, StoreUnavailableError, TransportError
from leadflow.dispatch import (
    ConversationLockManager,
    MessageTransport,
    ReplyGenerator,
    build_transports,
)
from leadflow.followups import FollowUpService
from leadflow.idempotency import IdempotencyStore

from .handlers import DEFAULT_HANDLERS, JobContext, JobHandler
from .notifier import WakeupListener
from .queue import ClaimedJob, JobQueue

logger = logging.getLogger(__name__)

JOB_LATENCY = Histogram(
    "leadflow_job_latency_seconds",
    "Execution latency for automation jobs.",
    ["job_type"],
)


class AutomationWorker:
    """One polling loop: claim a batch, run handlers, record outcomes.

    Exceptions raised by a handler stop at the job boundary and become a
    ``mark_failed`` or ``requeue`` decision; they never end the loop.
    """

    def __init__(
        self,
        settings: AppSettings,
        engine: Engine,
        *,
        worker_id: str,
        handlers: Mapping[str, JobHandler] | None = None,
        transports: Mapping[ChannelType, MessageTransport] | None = None,
        generator: ReplyGenerator | None = None,
        listener: WakeupListener | None = None,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self.worker_id = worker_id
        self._handlers = dict(handlers or DEFAULT_HANDLERS)
        self._transports = transports or {}
        self._generator = generator or ReplyGenerator(settings.openai, settings.llm)
        self._listener = listener

    async def run(self, shutdown: asyncio.Event) -> None:
        logger.info("automation.worker.starting", extra={"worker_id": self.worker_id})
        while not shutdown.is_set():
            try:
                processed = await self.run_once()
            except StoreUnavailableError:
                processed = 0
                logger.error("automation.worker.store_unavailable", extra={"worker_id": self.worker_id})
            if processed:
                continue
            await self._idle()
        logger.info("automation.worker.stopped", extra={"worker_id": self.worker_id})

    async def run_once(self) -> int:
        """Claim and process one batch; return the number of jobs claimed."""

        with session_scope(self._engine) as session:
            jobs = JobQueue(session, self._settings.queue).claim_batch(self.worker_id)
        for job in jobs:
            await self._execute(job)
        return len(jobs)

    async def _idle(self) -> None:
        interval = self._settings.queue.poll_interval_seconds
        if self._listener is not None:
            await self._listener.wait(interval)
        else:
            await asyncio.sleep(interval)

    async def _execute(self, job: ClaimedJob) -> None:
        handler = self._handlers.get(job.job_type)
        started = time.perf_counter()
        with session_scope(self._engine) as session:
            queue = JobQueue(session, self._settings.queue)
            if handler is None:
                queue.mark_failed(
                    job.id, self.worker_id, f"no handler for {job.job_type}", retryable=False
                )
                return
            context = JobContext(
                session=session,
                settings=self._settings,
                transports=self._transports,
                generator=self._generator,
                worker_id=self.worker_id,
            )
            try:
                await handler(context, job)
            except DispatchLockBusy:
                session.rollback()
                delay = self._settings.dispatch.lock_wait_seconds + self._settings.dispatch.lock_poll_seconds
                queue.requeue(job.id, self.worker_id, delay_seconds=delay)
                logger.info(
                    "automation.job.requeued",
                    extra={"job_id": str(job.id), "reason": "conversation_lock_busy"},
                )
            except TransportError as exc:
                session.rollback()
                queue.mark_failed(
                    job.id,
                    self.worker_id,
                    f"{exc.error_class.value}: {exc.message}",
                    retryable=exc.retryable,
                )
            except StoreUnavailableError:
                # the lease expires and the sweep hands the job to another worker
                raise
            except Exception as exc:
                logger.exception(
                    "automation.job.error",
                    extra={"job_id": str(job.id), "job_type": job.job_type},
                )
                session.rollback()
                queue.mark_failed(job.id, self.worker_id, str(exc) or type(exc).__name__)
            else:
                queue.mark_completed(job.id, self.worker_id)
            finally:
                JOB_LATENCY.labels(job.job_type).observe(time.perf_counter() - started)


@dataclass(slots=True)
class SweepReport:
    reclaimed_jobs: int = 0
    unconfirmed_outbound: int = 0
    purged_locks: int = 0
    pending_jobs: int = 0


def run_sweep(settings: AppSettings, engine: Engine, *, now: datetime | None = None) -> SweepReport:
    """Crash recovery: reclaim expired job leases, flag unconfirmed sends, drop dead locks."""

    now = now or datetime.now(tz=UTC)
    report = SweepReport()
    with session_scope(engine) as session:
        queue = JobQueue(session, settings.queue)
        report.reclaimed_jobs = queue.reclaim_stale(
            timedelta(seconds=settings.queue.lease_timeout_seconds), now=now
        )

        flagged = IdempotencyStore(session).reconcile_stale_outbound(
            older_than=timedelta(seconds=settings.dispatch.outbound_reconcile_after_seconds),
            now=now,
        )
        followups = FollowUpService(session)
        for record in flagged:
            followups.create_task(
                models.TaskKind.VERIFY_DELIVERY,
                "Check whether the automated reply reached the customer",
                idempotency_key=f"verify_delivery:{record.channel}:{record.trigger_message_id}",
                conversation_id=record.conversation_id,
                due_at=now,
                details={"trigger_message_id": record.trigger_message_id},
            )
        session.commit()
        report.unconfirmed_outbound = len(flagged)

        report.purged_locks = ConversationLockManager(session, settings.dispatch).purge_expired(
            now=now
        )
        report.pending_jobs = queue.pending_count()
    logger.info(
        "automation.sweep.done",
        extra={
            "reclaimed_jobs": report.reclaimed_jobs,
            "unconfirmed_outbound": report.unconfirmed_outbound,
            "purged_locks": report.purged_locks,
            "pending_jobs": report.pending_jobs,
        },
    )
    return report


class WorkerPool:
    """Run ``worker_count`` workers concurrently plus the periodic sweep."""

    def __init__(
        self,
        settings: AppSettings,
        engine: Engine,
        *,
        handlers: Mapping[str, JobHandler] | None = None,
        transports: Mapping[ChannelType, MessageTransport] | None = None,
        generator: ReplyGenerator | None = None,
        listener: WakeupListener | None = None,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._shutdown = asyncio.Event()
        self._transports = transports if transports is not None else build_transports(settings.gateway)
        self._listener = listener
        generator = generator or ReplyGenerator(settings.openai, settings.llm)
        prefix = f"{socket.gethostname()}-{uuid4().hex[:8]}"
        self.workers = [
            AutomationWorker(
                settings,
                engine,
                worker_id=f"{prefix}-{index}",
                handlers=handlers,
                transports=self._transports,
                generator=generator,
                listener=listener,
            )
            for index in range(settings.queue.worker_count)
        ]

    async def start(self) -> None:
        logger.info("automation.pool.starting", extra={"workers": len(self.workers)})
        self._scheduler.add_job(
            self._sweep, "interval", seconds=self._settings.queue.sweep_interval_seconds
        )
        self._scheduler.start()
        if self._settings.telemetry.metrics_port:
            start_http_server(
                self._settings.telemetry.metrics_port,
                addr=self._settings.telemetry.metrics_host,
            )
        try:
            await asyncio.gather(*(worker.run(self._shutdown) for worker in self.workers))
        finally:
            self._scheduler.shutdown(wait=False)
            await self._close()

    async def stop(self) -> None:
        self._shutdown.set()

    async def _sweep(self) -> None:
        try:
            run_sweep(self._settings, self._engine)
        except StoreUnavailableError:
            logger.error("automation.sweep.store_unavailable")

    async def _close(self) -> None:
        closed: set[int] = set()
        for transport in self._transports.values():
            close = getattr(transport, "close", None)
            if close is None or id(transport) in closed:
                continue
            closed.add(id(transport))
            await close()
        if self._listener is not None:
            await self._listener.close()
