"""Single weekly run: wiring settings, config, oracle, provider, ledger and sender."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ingestion.connectors.base import ConfigurationError
from ingestion.research_config import load_research_config
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger
from llm.client.openai_client import Oracle, OracleClient
from publish.assembler import ReportPipeline, build_provider
from publish.ledger_store import build_blob_store
from publish.notifier import DeliveryResult, OutboxSender, ReportSender, deliver_report
from publish.seen_history import SeenHistoryLedger


def resolve_report_date(
    settings: Settings,
    value: Optional[str] = None,
    *,
    timezone: Optional[str] = None,
) -> date:
    """`YYYY-MM-DD` 문자열 또는 타임존 기준 오늘.

    타임존은 리서치 설정 값이 있으면 그것을, 없으면 환경 설정(TZ)을 쓴다.
    """
    if value:
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ConfigurationError(f"리포트 날짜 형식이 올바르지 않습니다: {value}") from exc
    tz_name = timezone or settings.report_timezone
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ConfigurationError(f"알 수 없는 타임존입니다: {tz_name}") from exc
    return datetime.now(tz).date()


def run_weekly_report(
    report_date: Optional[date] = None,
    *,
    settings: Optional[Settings] = None,
    config_path: Optional[str] = None,
    provider_name: Optional[str] = None,
    oracle: Optional[Oracle] = None,
    sender: Optional[ReportSender] = None,
    dry_run: bool = False,
) -> DeliveryResult:
    cfg = settings or get_settings()
    config = load_research_config(config_path or cfg.research_config_path)
    run_date = report_date or resolve_report_date(cfg, timezone=config.timezone)
    client = oracle or OracleClient.from_env()
    provider = build_provider(cfg, config, client, name=provider_name)
    ledger = SeenHistoryLedger(build_blob_store(cfg), cfg.seen_history_path, keep_weeks=cfg.seen_history_keep_weeks)

    get_logger(__name__).info(
        "run.start",
        extra={"report_date": run_date.isoformat(), "provider": provider.name, "dry_run": dry_run},
    )
    try:
        assembled = ReportPipeline(config, client, provider, ledger).run(run_date)
    finally:
        provider.close()
    return deliver_report(
        assembled,
        sender or OutboxSender(cfg.output_dir, subject_prefix=config.subject_prefix),
        ledger,
        cfg.output_dir,
        dry_run=dry_run,
    )
