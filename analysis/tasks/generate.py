"""Report generation from collected evidence, with a one-shot web-search fallback."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence

from analysis.models.domain import WeeklyReport
from analysis.prompts.templates import build_report_from_sources_prompt, build_weekly_report_prompt
from analysis.services.schema_repair import (
    ReportRepairError,
    enforce_allowed_urls,
    validate_or_repair,
)
from ingestion.models.domain import SourceItem
from ingestion.research_config import ResearchConfig
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError, Oracle


def uncovered_categories(report: WeeklyReport, sources: Sequence[SourceItem]) -> List[str]:
    """근거는 있는데 리포트에서 비어 있는 카테고리."""
    with_sources = list(dict.fromkeys(s.category for s in sources))
    return [cid for cid in with_sources if not report.category_updates.get(cid)]


def _generate_once(
    oracle: Oracle,
    config: ResearchConfig,
    report_date: date,
    week_number: int,
    sources: Sequence[SourceItem],
    allowed_urls: Sequence[str],
    strict_coverage: Optional[Sequence[str]] = None,
) -> WeeklyReport:
    prompt = build_report_from_sources_prompt(
        config, report_date, week_number, sources, allowed_urls, strict_coverage=strict_coverage
    )
    response = oracle.generate(prompt, web_search=False)
    report = validate_or_repair(
        response.text,
        oracle,
        category_ids=config.category_ids,
        report_date=report_date,
        week_number=week_number,
    )
    return enforce_allowed_urls(report, allowed_urls)


def generate_report_without_sources(
    oracle: Oracle,
    config: ResearchConfig,
    report_date: date,
    week_number: int,
) -> WeeklyReport:
    """근거가 비었을 때 웹 검색으로 리포트를 한 번에 작성한다.

    링크는 오라클이 실제로 방문한 인용 URL로만 제한한다.
    """
    logger = get_logger(__name__)
    response = oracle.generate(build_weekly_report_prompt(config, report_date, week_number), web_search=True)
    report = validate_or_repair(
        response.text,
        oracle,
        category_ids=config.category_ids,
        report_date=report_date,
        week_number=week_number,
    )
    report = enforce_allowed_urls(report, response.grounded_urls)
    logger.info(
        "generate.one_shot",
        extra={"updates": report.total_updates(), "grounded_urls": len(response.grounded_urls)},
    )
    return report


def generate_report(
    oracle: Oracle,
    config: ResearchConfig,
    report_date: date,
    sources: Sequence[SourceItem],
    *,
    week_number: Optional[int] = None,
) -> WeeklyReport:
    """근거 목록만으로 리포트를 작성한다.

    근거가 없으면 웹 검색 1회 작성으로 대신한다. 근거가 있는 카테고리가
    비었거나 액션 아이템이 3개 미만이면 엄격 커버리지 재요청을 1회 한다.
    """
    logger = get_logger(__name__)
    week = week_number or report_date.isocalendar()[1]
    if not sources:
        logger.warning("generate.no_sources", extra={"report_date": report_date.isoformat()})
        return generate_report_without_sources(oracle, config, report_date, week)

    allowed = list(dict.fromkeys(s.url for s in sources))
    report = _generate_once(oracle, config, report_date, week, sources, allowed)
    missing = uncovered_categories(report, sources)
    logger.info(
        "generate.report",
        extra={"updates": report.total_updates(), "uncovered": missing, "action_items": len(report.action_items)},
    )
    if not missing and len(report.action_items) >= 3:
        return report

    logger.warning("generate.strict_retry", extra={"uncovered": missing, "action_items": len(report.action_items)})
    try:
        retried = _generate_once(
            oracle, config, report_date, week, sources, allowed, strict_coverage=missing or config.category_ids
        )
    except (LLMError, ReportRepairError) as exc:
        logger.warning("generate.strict_retry_failed", extra={"error": str(exc)})
        return report

    if len(uncovered_categories(retried, sources)) <= len(missing) and retried.total_updates() >= report.total_updates():
        return retried
    return report
