from celery import Celery
from kombu import Queue

from referral_waitlist.platform.config import settings


def create_celery_app() -> Celery:
    """
    Celery application for the waitlist maintenance jobs.

    Beat schedule:
    - recompute cached positions every WAITLIST_RECOMPUTE_INTERVAL seconds
    - promote WAITLIST_PROMOTION_AMOUNT entries every WAITLIST_PROMOTION_INTERVAL seconds
    """
    celery_app = Celery(
        "referral_waitlist",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
        result_expires=3600,
        task_routes={
            "referral_waitlist.features.waitlist.workers.tasks.*": {"queue": "waitlist"},
        },
        task_queues=(
            Queue("default"),
            Queue("waitlist"),
        ),
        task_default_queue="default",
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        beat_schedule={
            "recompute-waitlist-positions": {
                "task": "referral_waitlist.features.waitlist.workers.tasks.recompute_waitlist_positions",
                "schedule": settings.WAITLIST_RECOMPUTE_INTERVAL,
            },
            "promote-waitlist-front": {
                "task": "referral_waitlist.features.waitlist.workers.tasks.promote_waitlist_front",
                "schedule": settings.WAITLIST_PROMOTION_INTERVAL,
                "args": (settings.WAITLIST_PROMOTION_AMOUNT,),
            },
        },
    )

    celery_app.autodiscover_tasks(["referral_waitlist.features.waitlist.workers"])

    return celery_app


celery_app = create_celery_app()
