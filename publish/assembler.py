"""Weekly report pipeline: evidence → validated, link-checked, deduplicated report."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from analysis.models.domain import WeeklyReport
from analysis.services.fallback_fill import fill_overseas_from_sources, fill_report_from_sources
from analysis.services.link_check import verify_report_links
from analysis.services.origin import (
    SourceSearchFn,
    backfill_coverage,
    ensure_overseas_section,
    lookup_company_homepages,
    lookup_company_hq,
    split_overseas_by_hq,
)
from analysis.tasks.generate import generate_report
from ingestion.connectors.base import ConfigurationError, EvidenceProvider
from ingestion.connectors.grounded_search import GroundedSearchProvider
from ingestion.connectors.news_search import NewsSearchProvider
from ingestion.research_config import ResearchConfig
from ingestion.services.company_names import company_match_key
from ingestion.services.url_prober import HomepageFallbackDetector, UrlProber
from ingestion.settings import Settings
from ingestion.tasks.collect import collect_evidence
from ingestion.utils.logging import get_logger
from llm.client.openai_client import Oracle
from publish.seen_history import (
    History,
    SeenHistoryLedger,
    count_report_items,
    filter_report_by_seen,
    get_seen_urls,
    week_key,
)

ProviderBuilder = Callable[[Settings, ResearchConfig, Oracle], EvidenceProvider]
MAX_LOOKUP_COMPANIES = 50


@dataclass
class RunCounters:
    sources_collected: int = 0
    search_queries: int = 0
    dropped_urls: int = 0
    rewritten_urls: int = 0
    deduped_items: int = 0
    attempts: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class AssembledReport:
    report: WeeklyReport
    week_key: str
    counters: RunCounters = field(default_factory=RunCounters)
    history: History = field(default_factory=dict)


def _build_grounded(settings: Settings, config: ResearchConfig, oracle: Oracle) -> EvidenceProvider:
    return GroundedSearchProvider(oracle, category_ids=config.category_ids)


def _build_news(settings: Settings, config: ResearchConfig, oracle: Oracle) -> EvidenceProvider:
    return NewsSearchProvider.from_settings(settings, config, oracle=oracle)


PROVIDER_FACTORY: Dict[str, ProviderBuilder] = {
    "grounded_search": _build_grounded,
    "news_search": _build_news,
}


def build_provider(
    settings: Settings,
    config: ResearchConfig,
    oracle: Oracle,
    *,
    name: Optional[str] = None,
) -> EvidenceProvider:
    provider_name = name or settings.evidence_provider
    try:
        builder = PROVIDER_FACTORY[provider_name]
    except KeyError as exc:
        raise ConfigurationError(f"지원하지 않는 근거 수집 provider입니다: {provider_name}") from exc
    return builder(settings, config, oracle)


def _report_companies(report: WeeklyReport) -> List[str]:
    names = [h.company for h in report.top_highlights]
    names += [u.company for items in report.category_updates.values() for u in items]
    names += [u.company for u in report.overseas_competitor_updates]
    names += [s.company for s in report.hiring_signals]
    return list(dict.fromkeys(n for n in names if n))


def attach_homepages(report: WeeklyReport, homepages: Mapping[str, str]) -> WeeklyReport:
    """리포트에 등장하는 회사의 홈페이지만 붙인다."""
    out = report.model_copy(deep=True)
    by_key = {company_match_key(k): v for k, v in homepages.items()}
    attached: Dict[str, str] = {}
    for company in _report_companies(out):
        url = homepages.get(company) or by_key.get(company_match_key(company))
        if url:
            attached[company] = url
    out.company_homepages = attached
    return out


class ReportPipeline:
    """한 번의 주간 실행을 조립한다.

    각 단계는 리포트 사본을 받아 새 사본을 돌려주며, 이력(ledger)은 실행 시작 시
    1회만 읽는다. 저장은 발송 성공 후 ``publish.notifier.deliver_report``가 맡는다.
    """

    def __init__(
        self,
        config: ResearchConfig,
        oracle: Oracle,
        provider: EvidenceProvider,
        ledger: SeenHistoryLedger,
        *,
        prober: Optional[UrlProber] = None,
        detector: Optional[HomepageFallbackDetector] = None,
        search_sources: Optional[SourceSearchFn] = None,
    ) -> None:
        self._config = config
        self._oracle = oracle
        self._provider = provider
        self._ledger = ledger
        self._prober = prober
        self._detector = detector
        if search_sources is None:
            # 수집 provider와 무관하게 보강 검색은 웹 검색 오라클로 한다.
            searcher = (
                provider
                if isinstance(provider, GroundedSearchProvider)
                else GroundedSearchProvider(oracle, category_ids=config.category_ids)
            )
            search_sources = searcher.search_sources
        self._search_sources = search_sources
        self._logger = get_logger(__name__)

    def _link_checkers(self) -> tuple[UrlProber, Optional[HomepageFallbackDetector], bool]:
        owned = self._prober is None
        prober = self._prober or UrlProber(
            timeout_ms=self._config.url_check_timeout_ms,
            soft_404_enabled=self._config.soft_404_detection,
        )
        detector = self._detector
        if detector is None and owned and self._config.homepage_fallback_detection:
            detector = HomepageFallbackDetector(prober.client, timeout_ms=self._config.url_check_timeout_ms)
        return prober, detector, owned

    def run(self, report_date: date) -> AssembledReport:
        config = self._config
        week = week_key(report_date)
        counters = RunCounters()
        history = self._ledger.load()
        extra: Dict[str, Any] = {"report_date": report_date.isoformat(), "week": week}
        self._logger.info("pipeline.start", extra={**extra, "provider": self._provider.name})

        collection = collect_evidence(self._provider, config, report_date)
        sources = collection.sources
        counters.attempts = collection.attempts
        counters.search_queries = collection.queries

        companies = list(dict.fromkeys(s.company for s in sources))
        company_hq = lookup_company_hq(self._oracle, companies)
        homepages = lookup_company_homepages(self._oracle, companies)

        per_company = self._provider.max_items_per_company or 1
        report = generate_report(self._oracle, config, report_date, sources)
        if not sources:
            # 근거가 없으면 리포트에 등장한 회사로 본사/홈페이지를 조회한다.
            report_companies = _report_companies(report)[:MAX_LOOKUP_COMPANIES]
            company_hq = lookup_company_hq(self._oracle, report_companies)
            homepages = lookup_company_homepages(self._oracle, report_companies)
        report = split_overseas_by_hq(report, company_hq, max_items=config.max_overseas_items)
        report = fill_report_from_sources(report, sources, config, company_hq, max_items_per_company=per_company)
        report = fill_overseas_from_sources(
            report,
            sources,
            company_hq,
            min_items=config.min_overseas_items,
            max_items=config.max_overseas_items,
        )

        backfilled = backfill_coverage(
            report,
            sources,
            config,
            self._oracle,
            self._search_sources,
            company_hq,
            report_date,
            max_items_per_company=per_company,
        )
        report = backfilled.report
        sources = backfilled.sources
        company_hq = backfilled.company_hq
        new_companies = [c for c in dict.fromkeys(s.company for s in sources) if c not in homepages]
        if new_companies:
            homepages.update(lookup_company_homepages(self._oracle, new_companies))
        counters.sources_collected = len(sources)

        report = ensure_overseas_section(
            report,
            company_hq,
            min_items=config.min_overseas_items,
            max_items=config.max_overseas_items,
        )

        prober, detector, owned = self._link_checkers()
        try:
            report, stats = verify_report_links(report, prober, detector, config, homepages=homepages)
        finally:
            if owned:
                prober.close()
        counters.dropped_urls = stats.dropped_urls
        counters.rewritten_urls = stats.rewritten_urls

        before = count_report_items(report)
        report = filter_report_by_seen(report, get_seen_urls(history, week))
        counters.deduped_items = before - count_report_items(report)

        report = attach_homepages(report, homepages)
        self._logger.info("pipeline.done", extra={**extra, **counters.as_dict()})
        return AssembledReport(report=report, week_key=week, counters=counters, history=history)
