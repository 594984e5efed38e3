"""Durable job queue, worker pool and job handlers."""

from .handlers import DEFAULT_HANDLERS, JobContext, handle_auto_reply, handle_handover_notice
from .notifier import JobNotifier, WakeupListener
from .queue import ClaimedJob, JobQueue, JobType
from .worker import AutomationWorker, SweepReport, WorkerPool, run_sweep

__all__ = [
    "DEFAULT_HANDLERS",
    "AutomationWorker",
    "ClaimedJob",
    "JobContext",
    "JobNotifier",
    "JobQueue",
    "JobType",
    "SweepReport",
    "WakeupListener",
    "WorkerPool",
    "handle_auto_reply",
    "handle_handover_notice",
    "run_sweep",
]
