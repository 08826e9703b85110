"""Celery tasks for the publish stage."""

from __future__ import annotations

from typing import Optional

from celery import shared_task

from ingestion.settings import get_settings
from publish.runner import resolve_report_date, run_weekly_report


@shared_task(
    name="publish.tasks.run_weekly_report",
    queue="publish.weekly",
)
def run_weekly_report_task(report_date: Optional[str] = None, dry_run: bool = False) -> str:  # pragma: no cover - thin Celery wrapper
    """Assemble and deliver one weekly report; returns the report.json path."""
    settings = get_settings()
    result = run_weekly_report(
        resolve_report_date(settings, report_date) if report_date else None,
        settings=settings,
        dry_run=dry_run,
    )
    return str(result.report_path)
