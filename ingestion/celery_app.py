"""Celery 애플리케이션 부트스트랩."""

from __future__ import annotations

import logging
from typing import Any, Dict

from celery import Celery
from celery.schedules import crontab

from .settings import Settings, get_settings
from .utils.logging import configure_logging

WEEKLY_TASK_NAME = "publish.tasks.run_weekly_report"

_CELERY_APP: Celery | None = None


def create_celery_app(settings: Settings | None = None) -> Celery:
    """설정을 기반으로 Celery 인스턴스를 생성한다."""
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery("radar", broker=config.celery_broker_url)
    app.conf.update(
        task_default_queue="publish.weekly",
        task_default_exchange="radar",
        task_default_routing_key="publish.weekly",
        task_soft_time_limit=config.celery_task_soft_time_limit,
        # 주간 실행은 한 번에 하나만
        worker_concurrency=1,
        beat_schedule=_build_beat_schedule(config),
        timezone=config.report_timezone,
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.autodiscover_tasks(["publish"])
    _install_signal_handlers(app)
    return app


def get_celery_app() -> Celery:
    """싱글톤 Celery 인스턴스를 반환한다."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    return {
        f"weekly_report.{settings.weekly_run_day_of_week}.{settings.weekly_run_hour:02d}": {
            "task": WEEKLY_TASK_NAME,
            "schedule": crontab(
                minute=0,
                hour=settings.weekly_run_hour,
                day_of_week=settings.weekly_run_day_of_week,
            ),
            "options": {"queue": "publish.weekly"},
        }
    }


def _install_signal_handlers(app: Celery) -> None:
    from celery import signals

    logger = logging.getLogger("radar.worker")

    @signals.worker_shutdown.connect  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("Celery worker shutdown detected", extra={"sender": sender})
