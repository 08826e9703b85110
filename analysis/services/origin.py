"""Company origin (HQ) classification, overseas split and coverage backfill."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

from analysis.models.domain import OverseasUpdate, WeeklyReport
from analysis.prompts.templates import (
    build_backfill_sources_prompt,
    build_company_homepages_prompt,
    build_company_hq_prompt,
    build_overseas_sources_prompt,
)
from analysis.services.fallback_fill import fill_overseas_from_sources, fill_report_from_sources
from ingestion.models.domain import SourceItem, merge_sources
from ingestion.research_config import ResearchConfig
from ingestion.services.company_names import company_match_key, is_known_foreign, resolve_country
from ingestion.services.url_normalizer import clean_http_url
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError, Oracle
from llm.parsing import JsonParseError, parse_json_lenient

SourceSearchFn = Callable[[str], List[SourceItem]]

logger = get_logger(__name__)


def _lookup_mapping(oracle: Oracle, prompt: str, root_key: str) -> Dict[str, str]:
    try:
        response = oracle.generate(prompt, web_search=True)
        parsed = parse_json_lenient(response.text)
    except (LLMError, JsonParseError) as exc:
        # HQ/홈페이지 조회 실패는 "모름"으로 처리한다.
        logger.warning("origin.lookup_failed", extra={"key": root_key, "error": str(exc)})
        return {}
    mapping = parsed.get(root_key) if isinstance(parsed, dict) else None
    if not isinstance(mapping, dict):
        return {}
    return {
        str(k).strip(): v.strip()
        for k, v in mapping.items()
        if isinstance(k, str) and k.strip() and isinstance(v, str) and v.strip()
    }


def lookup_company_hq(oracle: Oracle, companies: Iterable[str]) -> Dict[str, str]:
    """회사 → 본사 국가. 오라클 1회 호출, 결과는 저장하지 않는다."""
    names = list(dict.fromkeys(c.strip() for c in companies if c and c.strip()))
    if not names:
        return {}
    result = _lookup_mapping(oracle, build_company_hq_prompt(names), "company_hq")
    logger.info("origin.hq", extra={"requested": len(names), "resolved": len(result)})
    return result


def lookup_company_homepages(oracle: Oracle, companies: Iterable[str]) -> Dict[str, str]:
    """회사 → 공식 홈페이지 URL (절대 http(s)만)."""
    names = list(dict.fromkeys(c.strip() for c in companies if c and c.strip()))
    if not names:
        return {}
    raw = _lookup_mapping(oracle, build_company_homepages_prompt(names), "company_homepages")
    homepages: Dict[str, str] = {}
    for company, url in raw.items():
        cleaned = clean_http_url(url)
        if cleaned:
            homepages[company] = cleaned
    return homepages


def _overseas_key(company: str, title: str) -> str:
    return f"{company_match_key(company)}|{title.strip().lower()}"


def split_overseas_by_hq(
    report: WeeklyReport,
    company_hq: Mapping[str, str],
    *,
    max_items: int = 15,
) -> WeeklyReport:
    """해외 본사로 확인된 회사의 카테고리 항목을 해외 섹션으로 옮긴다.

    링크 없는 해외 항목은 옮기지 않고 버린다. HQ를 모르는 회사는 그대로 둔다.
    """
    out = report.model_copy(deep=True)
    overseas = list(out.overseas_competitor_updates)
    seen = {_overseas_key(u.company, u.title) for u in overseas}
    moved = 0

    for cid, items in out.category_updates.items():
        kept = []
        for u in items:
            if not is_known_foreign(u.company, company_hq):
                kept.append(u)
                continue
            if not u.url:
                continue
            key = _overseas_key(u.company, u.title)
            if key in seen:
                continue
            seen.add(key)
            overseas.append(
                OverseasUpdate(
                    company=u.company,
                    country=resolve_country(u.company, company_hq),
                    category=cid,
                    tag=u.tag,
                    title=u.title,
                    url=u.url,
                    insight=u.insight,
                )
            )
            moved += 1
        out.category_updates[cid] = kept

    for u in overseas:
        if not u.country and is_known_foreign(u.company, company_hq):
            u.country = resolve_country(u.company, company_hq)
    out.overseas_competitor_updates = overseas[:max_items]
    if moved:
        logger.info("origin.split", extra={"moved": moved, "overseas": len(out.overseas_competitor_updates)})
    return out


def ensure_overseas_section(
    report: WeeklyReport,
    company_hq: Mapping[str, str],
    *,
    min_items: int = 10,
    max_items: int = 15,
) -> WeeklyReport:
    """해외 섹션이 부족하면 해외 회사의 하이라이트/채용 신호(링크 있는 것)를 승격한다."""
    if len(report.overseas_competitor_updates) >= min_items:
        return report
    out = report.model_copy(deep=True)
    bucket = list(out.overseas_competitor_updates)
    seen = {_overseas_key(u.company, u.title) for u in bucket}

    candidates: List[OverseasUpdate] = []
    for h in out.top_highlights:
        if h.link and is_known_foreign(h.company, company_hq):
            candidates.append(
                OverseasUpdate(
                    company=h.company,
                    country=resolve_country(h.company, company_hq),
                    category=h.category,
                    tag="Highlight",
                    title=h.title,
                    url=h.link,
                    insight=h.insight,
                )
            )
    for s in out.hiring_signals:
        if s.url and is_known_foreign(s.company, company_hq):
            candidates.append(
                OverseasUpdate(
                    company=s.company,
                    country=resolve_country(s.company, company_hq),
                    tag="Hiring",
                    title=f"채용: {s.position}",
                    url=s.url,
                    insight=s.strategic_inference,
                )
            )

    for c in candidates:
        if len(bucket) >= max_items:
            break
        key = _overseas_key(c.company, c.title)
        if key in seen:
            continue
        seen.add(key)
        bucket.append(c)
    out.overseas_competitor_updates = bucket[:max_items]
    return out


def domestic_shortfall(report: WeeklyReport, config: ResearchConfig) -> Dict[str, int]:
    """카테고리별로 최소 회사 수에 모자란 개수."""
    short: Dict[str, int] = {}
    for cid in config.category_ids:
        distinct = {company_match_key(u.company) for u in report.category_updates.get(cid, [])}
        missing = config.min_companies_per_category - len(distinct)
        if missing > 0:
            short[cid] = missing
    return short


@dataclass
class BackfillResult:
    report: WeeklyReport
    sources: List[SourceItem] = field(default_factory=list)
    company_hq: Dict[str, str] = field(default_factory=dict)
    rounds: int = 0


def _resolve_new_companies(
    oracle: Oracle, sources: Sequence[SourceItem], company_hq: Dict[str, str]
) -> None:
    unknown = [s.company for s in sources if resolve_country(s.company, company_hq) is None]
    if unknown:
        company_hq.update(lookup_company_hq(oracle, unknown))


def backfill_coverage(
    report: WeeklyReport,
    sources: Sequence[SourceItem],
    config: ResearchConfig,
    oracle: Oracle,
    search_sources: SourceSearchFn,
    company_hq: Mapping[str, str],
    report_date: date,
    *,
    max_items_per_company: int = 1,
) -> BackfillResult:
    """국내 1회 + 해외 1회까지 좁은 보강 검색으로 커버리지를 채운다."""
    hq: Dict[str, str] = dict(company_hq)
    all_sources = list(sources)
    out = report
    rounds = 0

    short = domestic_shortfall(out, config)
    if short:
        rounds += 1
        known = [u.company for items in out.category_updates.values() for u in items]
        found = search_sources(build_backfill_sources_prompt(config, report_date, short, known))
        logger.info("backfill.domestic", extra={"short": short, "found": len(found)})
        if found:
            _resolve_new_companies(oracle, found, hq)
            all_sources = merge_sources(all_sources, found)
            out = fill_report_from_sources(out, found, config, hq, max_items_per_company=max_items_per_company)
            out = split_overseas_by_hq(out, hq, max_items=config.max_overseas_items)
        remaining = domestic_shortfall(out, config)
        if remaining:
            logger.warning("backfill.domestic_shortfall", extra={"short": remaining})

    if len(out.overseas_competitor_updates) < config.min_overseas_items:
        rounds += 1
        needed = config.min_overseas_items - len(out.overseas_competitor_updates)
        known = [u.company for u in out.overseas_competitor_updates]
        found = search_sources(build_overseas_sources_prompt(config, report_date, needed, known))
        logger.info("backfill.overseas", extra={"needed": needed, "found": len(found)})
        if found:
            _resolve_new_companies(oracle, found, hq)
            all_sources = merge_sources(all_sources, found)
            out = fill_overseas_from_sources(
                out, found, hq, min_items=config.min_overseas_items, max_items=config.max_overseas_items
            )
        if len(out.overseas_competitor_updates) < config.min_overseas_items:
            logger.warning(
                "backfill.overseas_shortfall",
                extra={"overseas": len(out.overseas_competitor_updates), "min": config.min_overseas_items},
            )

    return BackfillResult(report=out, sources=all_sources, company_hq=hq, rounds=rounds)
