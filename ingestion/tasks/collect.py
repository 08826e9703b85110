"""Coverage-driven evidence collection.

상태 흐름: collecting → evaluating → (retrying → evaluating)* → accepted.
커버리지 부족은 재시도로 보강하고, 한도를 넘기면 경고만 남기고 수용한다.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Sequence

from analysis.prompts.templates import build_retry_hint
from ingestion.connectors.base import EvidenceProvider
from ingestion.models.domain import SourceItem, merge_sources
from ingestion.research_config import ResearchConfig
from ingestion.services.company_names import company_match_key, has_hangul
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError

MIN_SOURCE_FLOOR = 3
MIN_RETRY_TARGET = 20


@dataclass
class CoverageReport:
    missing_categories: List[str] = field(default_factory=list)
    short_categories: Dict[str, int] = field(default_factory=dict)
    total_sources: int = 0
    source_floor: int = MIN_SOURCE_FLOOR

    @property
    def ok(self) -> bool:
        return not self.missing_categories and not self.short_categories and self.total_sources >= self.source_floor


@dataclass
class CollectionResult:
    sources: List[SourceItem]
    provider: str
    attempts: int
    queries: int
    coverage: CoverageReport


def source_floor(config: ResearchConfig) -> int:
    return max(MIN_SOURCE_FLOOR, config.min_source_urls)


def retry_target(config: ResearchConfig) -> int:
    return max(config.min_companies_per_category * len(config.categories), MIN_RETRY_TARGET)


def evaluate_coverage(sources: Sequence[SourceItem], config: ResearchConfig) -> CoverageReport:
    """카테고리별 회사 수(국내=한글 이름 기준)와 전체 출처 수를 평가한다."""
    companies: Dict[str, set] = {cid: set() for cid in config.category_ids}
    domestic: Dict[str, set] = {cid: set() for cid in config.category_ids}
    for s in sources:
        if s.category not in companies:
            continue
        key = company_match_key(s.company)
        companies[s.category].add(key)
        if has_hangul(s.company):
            domestic[s.category].add(key)

    report = CoverageReport(total_sources=len(sources), source_floor=source_floor(config))
    for cid in config.category_ids:
        if not companies[cid]:
            report.missing_categories.append(cid)
        elif len(domestic[cid]) < config.min_companies_per_category:
            report.short_categories[cid] = len(domestic[cid])
    return report


def collect_evidence(
    provider: EvidenceProvider,
    config: ResearchConfig,
    report_date: date,
) -> CollectionResult:
    """Collect sources, retrying with a coverage hint while the provider supports it."""
    logger = get_logger(__name__)
    trace_id = str(uuid.uuid4())
    extra = {"trace_id": trace_id, "provider": provider.name, "report_date": report_date.isoformat()}

    logger.info("collect.start", extra=extra)
    batch = provider.collect(config, report_date)
    sources = merge_sources(batch.sources)
    queries = len(batch.meta.queries)
    attempts = 1
    coverage = evaluate_coverage(sources, config)
    logger.info(
        "collect.evaluate",
        extra={**extra, "attempt": attempts, "sources": len(sources), "missing": coverage.missing_categories, "short": coverage.short_categories},
    )

    while not coverage.ok and provider.supports_retry and attempts < config.max_source_attempts:
        attempts += 1
        hint = build_retry_hint(
            attempt=attempts,
            missing_categories=coverage.missing_categories,
            short_categories=coverage.short_categories,
            min_companies=config.min_companies_per_category,
            target_total=retry_target(config),
            current_total=len(sources),
        )
        logger.info("collect.retry", extra={**extra, "attempt": attempts})
        try:
            batch = provider.collect(config, report_date, retry_hint=hint)
        except LLMError as exc:
            logger.warning("collect.retry_failed", extra={**extra, "attempt": attempts, "error": str(exc)})
            break
        sources = merge_sources(sources, batch.sources)
        queries += len(batch.meta.queries)
        coverage = evaluate_coverage(sources, config)
        logger.info(
            "collect.evaluate",
            extra={**extra, "attempt": attempts, "sources": len(sources), "missing": coverage.missing_categories, "short": coverage.short_categories},
        )

    if not coverage.ok:
        logger.warning(
            "collect.shortfall",
            extra={
                **extra,
                "attempts": attempts,
                "sources": len(sources),
                "floor": coverage.source_floor,
                "missing": coverage.missing_categories,
                "short": coverage.short_categories,
            },
        )
    logger.info("collect.accepted", extra={**extra, "attempts": attempts, "sources": len(sources)})
    return CollectionResult(
        sources=sources,
        provider=provider.name,
        attempts=attempts,
        queries=queries,
        coverage=coverage,
    )
