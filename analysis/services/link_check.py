"""Post-hoc link verification for an assembled report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Set, Tuple

from analysis.models.domain import WeeklyReport
from ingestion.research_config import ResearchConfig
from ingestion.services.url_prober import HomepageFallbackDetector, UrlProber, split_results
from ingestion.utils.logging import get_logger


@dataclass
class LinkCheckStats:
    checked: int = 0
    dropped_items: int = 0
    dropped_urls: int = 0
    rewritten_urls: int = 0
    unknown_urls: int = 0
    spoofed_urls: int = 0


def _apply(
    report: WeeklyReport,
    bad: Set[str],
    rewrites: Dict[str, str],
    drop_items: bool,
) -> Tuple[WeeklyReport, int]:
    out = report.model_copy(deep=True)
    dropped = 0

    def _resolve(url: Optional[str]) -> Tuple[bool, Optional[str]]:
        """(유지 여부, 새 URL)."""
        if not url:
            return True, url
        if url in bad:
            return (not drop_items), None
        return True, rewrites.get(url, url)

    highlights = []
    for h in out.top_highlights:
        keep, h.link = _resolve(h.link)
        if keep:
            highlights.append(h)
        else:
            dropped += 1
    out.top_highlights = highlights

    for cid, items in out.category_updates.items():
        kept = []
        for u in items:
            keep, u.url = _resolve(u.url)
            if keep:
                kept.append(u)
            else:
                dropped += 1
        out.category_updates[cid] = kept

    overseas = []
    for u in out.overseas_competitor_updates:
        keep, u.url = _resolve(u.url)
        if keep:
            overseas.append(u)
        else:
            dropped += 1
    out.overseas_competitor_updates = overseas

    signals = []
    for s in out.hiring_signals:
        keep, s.url = _resolve(s.url)
        if keep:
            signals.append(s)
        else:
            dropped += 1
    out.hiring_signals = signals
    return out, dropped


def verify_report_links(
    report: WeeklyReport,
    prober: UrlProber,
    detector: Optional[HomepageFallbackDetector],
    config: ResearchConfig,
    *,
    homepages: Optional[Mapping[str, str]] = None,
) -> Tuple[WeeklyReport, LinkCheckStats]:
    """리포트 링크를 실시간 검증한다.

    - HTTP 4xx, SOFT_404, 홈페이지 위장 URL → 항목 제거 (drop_items_without_valid_url=False면 링크만 제거)
    - 리다이렉트로 이동한 링크 → final_url로 교체
    - 전송 오류, 5xx → 도달 여부 불명으로 보고 유지
    """
    logger = get_logger(__name__)
    stats = LinkCheckStats()
    if not config.verify_source_urls:
        return report, stats

    urls = report.all_urls()
    results = prober.check_urls(urls, concurrency=config.url_check_concurrency)
    stats.checked = len(results)
    dead, unknown = split_results(results)
    stats.unknown_urls = len(unknown)

    spoofed: Set[str] = set()
    known_homepages = homepages if homepages is not None else report.company_homepages
    if detector is not None and config.homepage_fallback_detection and known_homepages:
        alive = [u for u in urls if u not in dead]
        spoofed = detector.find_spoofed(alive, known_homepages)
    stats.spoofed_urls = len(spoofed)

    bad = dead | spoofed
    rewrites = {
        url: result.final_url
        for url, result in results.items()
        if result.ok and result.final_url and url not in bad
    }
    stats.dropped_urls = len(bad)
    stats.rewritten_urls = len(rewrites)

    out, dropped = _apply(report, bad, rewrites, config.drop_items_without_valid_url)
    stats.dropped_items = dropped
    logger.info(
        "link_check.done",
        extra={
            "checked": stats.checked,
            "dropped_items": stats.dropped_items,
            "dropped_urls": stats.dropped_urls,
            "rewritten_urls": stats.rewritten_urls,
            "unknown_urls": stats.unknown_urls,
            "spoofed_urls": stats.spoofed_urls,
        },
    )
    return out, stats
