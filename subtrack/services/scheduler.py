from __future__ import annotations

from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from sqlalchemy.orm import Session

from subtrack.db import SessionLocal
from subtrack.services.notifier import NotificationCenter, WorkResult, run_notification_check
from subtrack.utils.logger import get_logger

logger = get_logger(__name__)

JOB_ID = "subscription_notification_check"

# 省電力などで遅れても、1日以内なら拾う
MISFIRE_GRACE_SECONDS = 12 * 60 * 60


def schedule_notification_check(
    scheduler: BaseScheduler,
    job: Callable[[], object],
    *,
    days: int = 1,
):
    """JOB_ID の定期ジョブを登録する。既にあれば置き換える。"""
    return scheduler.add_job(
        job,
        trigger="interval",
        days=days,
        id=JOB_ID,
        name="subscription expiration check",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=MISFIRE_GRACE_SECONDS,
    )


def make_notification_job(
    center: NotificationCenter,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Callable[[], WorkResult]:
    def _job() -> WorkResult:
        result = run_notification_check(center, session_factory)
        if result is WorkResult.FAILURE:
            logger.warning("scheduled expiration check reported failure")
        return result

    return _job


def create_scheduler(
    center: NotificationCenter,
    session_factory: Callable[[], Session] = SessionLocal,
) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    schedule_notification_check(scheduler, make_notification_job(center, session_factory))
    return scheduler
