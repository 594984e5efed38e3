"""Run the automation worker pool: ``python -m leadflow.automation``."""

from __future__ import annotations

import asyncio

from leadflow.core.config import AppSettings
from leadflow.core.db.session import create_engine_from_settings
from leadflow.core.logging import configure_logging
from leadflow.core.telemetry import init_tracing

from .notifier import WakeupListener
from .worker import WorkerPool


async def _main() -> None:
    settings = AppSettings.load()
    configure_logging(service="leadflow-worker")
    init_tracing("leadflow-worker", settings.telemetry)
    engine = create_engine_from_settings(settings)
    pool = WorkerPool(
        settings,
        engine,
        listener=WakeupListener.from_settings(settings.redis),
    )
    await pool.start()


if __name__ == "__main__":
    asyncio.run(_main())
