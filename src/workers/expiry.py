"""
Background Ride-Expiry Worker
=============================

Runs every ``EXPIRY_SWEEP_INTERVAL_SECONDS`` (default 30 min).

Urgent requests (pickup within 24 h of booking) carry an ``expires_at``.
When it passes with no bid accepted, the ride is cancelled with no fee
and its open bids are closed, so riders are not left waiting on a ride
nobody will drive.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* **SELECT ... FOR UPDATE SKIP LOCKED** on the overdue rides keeps the
  sweep from blocking on, or racing with, a rider accepting a bid on the
  same ride.
"""

from __future__ import annotations

import asyncio
import logging

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.services.booking import BookingService

logger = logging.getLogger(__name__)

LOCK_NAME = "ride_expiry"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Expiry worker started (interval=%ds)",
        settings.expiry_sweep_interval_seconds,
    )


async def stop_expiry_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Expiry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: sweep, then sleep until the next interval or stop."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_cycle()
        except Exception:
            logger.exception("Unhandled error in expiry cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.expiry_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_expiry_cycle(session_factory=async_session_factory) -> int:
    """Execute one sweep.  Returns the number of rides cancelled."""
    redis = await get_redis()
    lock = DistributedLock(
        redis, LOCK_NAME, ttl_seconds=settings.expiry_lock_ttl_seconds
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping expiry sweep")
        return 0

    try:
        async with session_factory() as session:
            try:
                expired = await BookingService(session).expire_overdue()
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if not expired:
            logger.debug("No expired rides found")
        return len(expired)
    finally:
        await lock.release()
