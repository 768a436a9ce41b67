"""Celery workers module - imports task modules for autodiscovery."""

from referral_waitlist.features.waitlist.workers import tasks  # noqa: F401
