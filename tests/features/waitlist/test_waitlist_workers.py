import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from referral_waitlist.features.waitlist.schemas.waitlist import PromotionResult
from referral_waitlist.features.waitlist.workers import tasks
from referral_waitlist.platform.celery_app import celery_app


def fake_runner(service):
    return lambda job: asyncio.run(job(service))


def test_beat_schedule_registers_waitlist_jobs():
    schedule = celery_app.conf.beat_schedule

    assert (
        schedule["recompute-waitlist-positions"]["task"]
        == "referral_waitlist.features.waitlist.workers.tasks.recompute_waitlist_positions"
    )
    assert (
        schedule["promote-waitlist-front"]["task"]
        == "referral_waitlist.features.waitlist.workers.tasks.promote_waitlist_front"
    )


def test_promote_waitlist_front_task():
    service = MagicMock()
    service.promote_front = AsyncMock(
        return_value=PromotionResult(requested=3, promoted=3, batches=1, user_ids=["a", "b", "c"])
    )

    with patch.object(tasks, "run_with_service", side_effect=fake_runner(service)):
        result = tasks.promote_waitlist_front(3)

    assert result == {"requested": 3, "promoted": 3, "batches": 1, "user_ids": ["a", "b", "c"]}
    service.promote_front.assert_awaited_once_with(3)


def test_recompute_waitlist_positions_task():
    service = MagicMock()
    service.recompute_positions = AsyncMock(return_value=7)

    with patch.object(tasks, "run_with_service", side_effect=fake_runner(service)):
        assert tasks.recompute_waitlist_positions() == 7


def test_rebalance_waitlist_timestamps_task():
    service = MagicMock()
    service.rebalance_timestamps = AsyncMock(return_value=4)

    with patch.object(tasks, "run_with_service", side_effect=fake_runner(service)):
        assert tasks.rebalance_waitlist_timestamps() == 4

