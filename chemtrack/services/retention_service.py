from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from chemtrack.models import ActivityLog, utc_now

logger = logging.getLogger(__name__)


def purge_activity_logs_older_than(db: Session, *, max_age: timedelta, now: datetime | None = None) -> int:
    """Delete display-history rows past the horizon. Usage history is never touched."""
    cutoff = (now or utc_now()) - max_age
    result = db.execute(delete(ActivityLog).where(ActivityLog.created_at < cutoff))
    deleted = result.rowcount or 0
    logger.info('Deleted %d activity log entries older than %s', deleted, cutoff.isoformat())
    return deleted


def run_retention_sweep(session_factory: Callable[[], Session], *, max_age: timedelta) -> int | None:
    """Background entry point: commits on success, logs and swallows failures."""
    try:
        with session_factory() as db:
            deleted = purge_activity_logs_older_than(db, max_age=max_age)
            db.commit()
            return deleted
    except Exception:
        logger.exception('Activity log retention sweep failed')
        return None
