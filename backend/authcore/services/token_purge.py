"""Background retention sweep for expired refresh-token rows."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging

from sqlalchemy.orm import Session

from authcore.core.clock import utcnow
from authcore.core.config import settings
from authcore.db.session import SessionLocal
from authcore.db.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None


def purge_expired_refresh_tokens(
    db: Session,
    *,
    now: dt.datetime | None = None,
    retention: dt.timedelta | None = None,
) -> int:
    if retention is None:
        retention = dt.timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS)
    cutoff = (now or utcnow()) - retention
    uow = UnitOfWork(db)
    purged = uow.refresh_tokens.purge_expired_before(cutoff)
    uow.save_changes()
    logger.info("Refresh token purge completed: cutoff=%s purged=%s", cutoff.isoformat(), purged)
    return purged


def _run_once() -> None:
    db = SessionLocal()
    try:
        purge_expired_refresh_tokens(db)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Refresh token purge failed: %s", exc)
    finally:
        db.close()


async def _loop() -> None:
    startup_delay = max(0, settings.REFRESH_PURGE_STARTUP_DELAY_SECONDS)
    interval = max(60, settings.REFRESH_PURGE_INTERVAL_SECONDS)
    if startup_delay:
        await asyncio.sleep(startup_delay)
    while True:
        await asyncio.to_thread(_run_once)
        await asyncio.sleep(interval)


async def start_refresh_token_purge() -> None:
    global _task
    if _task is not None:
        return
    if not settings.REFRESH_PURGE_ENABLED:
        return
    _task = asyncio.create_task(_loop(), name="refresh-token-purge")
    logger.info("Refresh token purge loop started (every %s seconds)", max(60, settings.REFRESH_PURGE_INTERVAL_SECONDS))


async def stop_refresh_token_purge() -> None:
    global _task
    task = _task
    _task = None
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
