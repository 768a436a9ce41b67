"""
Periodic waitlist maintenance run by Celery Beat.

Each task runs on a fresh event loop with its own session. The engine pool
is disposed before the loop closes so no connection outlives its loop.
"""
import asyncio
from typing import Awaitable, Callable, TypeVar

from celery import shared_task

from referral_waitlist.features.waitlist.services.waitlist import WaitlistService
from referral_waitlist.platform.db.session import engine, get_async_db
from referral_waitlist.platform.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def run_with_service(job: Callable[[WaitlistService], Awaitable[T]]) -> T:
    async def _run() -> T:
        try:
            async with get_async_db() as db:
                return await job(WaitlistService(db))
        finally:
            await engine.dispose()

    return asyncio.run(_run())


@shared_task(name="referral_waitlist.features.waitlist.workers.tasks.recompute_waitlist_positions")
def recompute_waitlist_positions() -> int:
    moved = run_with_service(lambda service: service.recompute_positions())
    logger.info(f"Position recompute finished, {moved} entries moved")
    return moved


@shared_task(name="referral_waitlist.features.waitlist.workers.tasks.promote_waitlist_front")
def promote_waitlist_front(amount: int) -> dict:
    logger.info(f"Promoting the first {amount} waitlist entries")
    result = run_with_service(lambda service: service.promote_front(amount))
    return result.model_dump()


@shared_task(name="referral_waitlist.features.waitlist.workers.tasks.rebalance_waitlist_timestamps")
def rebalance_waitlist_timestamps() -> int:
    return run_with_service(lambda service: service.rebalance_timestamps())
