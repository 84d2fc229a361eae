from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from fastapi import FastAPI

from chemtrack.config import settings
from chemtrack.db import SessionLocal, init_db
from chemtrack.logging_config import configure_logging
from chemtrack.routers import inventory
from chemtrack.services.reporting_mirror_service import build_reporting_mirror
from chemtrack.services.retention_service import run_retention_sweep

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def _retention_loop(max_age: timedelta, interval_seconds: float) -> None:
    while True:
        await asyncio.to_thread(run_retention_sweep, SessionLocal, max_age=max_age)
        if interval_seconds <= 0:
            return
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        init_db()

    tasks = []
    mirror = app.state.reporting_mirror
    if mirror.enabled:
        tasks.append(asyncio.create_task(asyncio.to_thread(mirror.backfill)))

    tasks.append(
        asyncio.create_task(
            _retention_loop(
                timedelta(hours=settings.activity_log_retention_hours),
                settings.retention_sweep_interval_minutes * 60,
            )
        )
    )
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task


app = FastAPI(title='Chemical Inventory', lifespan=lifespan)
app.state.reporting_mirror = build_reporting_mirror(
    session_factory=SessionLocal,
    enabled=settings.sheets_enabled,
    service_account_json_path=settings.google_service_account_json_path,
    spreadsheet_id=settings.google_sheet_id,
    base_url=settings.sheets_api_base_url,
    timeout_seconds=settings.sheets_timeout_seconds,
    usage_history_limit=settings.sheets_usage_history_limit,
)

app.include_router(inventory.router)
