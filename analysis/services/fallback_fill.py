"""Deterministic fallback filler (오라클 호출 없음).

근거 목록만으로 카테고리/해외 섹션의 빈자리를 채운다. 기존 항목의 회사는
절대 제거하지 않고 추가만 한다.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Dict, List, Mapping, Sequence, Tuple

from analysis.models.domain import CategoryUpdate, OverseasUpdate, WeeklyReport
from ingestion.models.domain import SourceItem
from ingestion.research_config import ResearchConfig
from ingestion.services.company_names import (
    company_match_key,
    has_hangul,
    has_latin,
    is_known_foreign,
    resolve_country,
)
from ingestion.services.url_normalizer import normalize_url

_TAG_RULES: Tuple[Tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), tag)
    for pattern, tag in (
        (r"m&a|인수|합병|acquisition|merge", "M&A"),
        (r"투자|seed|series|fund|financing|raise", "투자"),
        (r"ipo|상장|spac", "IPO"),
        (r"파트너|제휴|협력|partnership|collaboration", "제휴"),
        (r"출시|런칭|release|launch", "출시"),
        (r"업데이트|update|changelog", "업데이트"),
        (r"채용|recruit|hiring|job", "채용"),
        (r"리포트|보고서|report|outlook", "리포트"),
        (r"가격|요금|pricing|price", "가격"),
        (r"특허|patent", "특허"),
        (r"글로벌|global|overseas|international", "글로벌"),
    )
)
DEFAULT_TAG = "Update"

ACTION_ITEM_TEMPLATE = "기획팀: {category} - {company} ({tag}) 업데이트 상세 검토 및 벤치마킹 포인트 정리"
MIN_ACTION_ITEMS = 3
MAX_ACTION_ITEMS = 6


def infer_tag(title: str) -> str:
    """제목 키워드로 태그 추론 (규칙 순서대로 첫 일치)."""
    for pattern, tag in _TAG_RULES:
        if pattern.search(title or ""):
            return tag
    return DEFAULT_TAG


def _update_from_source(source: SourceItem) -> CategoryUpdate:
    return CategoryUpdate(
        company=source.company,
        tag=infer_tag(source.title),
        title=source.title,
        url=source.url,
        insight=source.note,
    )


def _dedupe_existing(items: Sequence[CategoryUpdate], per_company: int) -> List[CategoryUpdate]:
    counts: Dict[str, int] = defaultdict(int)
    kept: List[CategoryUpdate] = []
    for u in items:
        key = company_match_key(u.company)
        if counts[key] >= per_company:
            continue
        counts[key] += 1
        kept.append(u)
    return kept


def _top_up_action_items(report: WeeklyReport) -> None:
    if len(report.action_items) >= MIN_ACTION_ITEMS or report.total_updates() == 0:
        return
    actions = list(report.action_items)
    pairs = [(cid, u) for cid, items in report.category_updates.items() for u in items][:MAX_ACTION_ITEMS]
    for cid, u in pairs:
        if len(actions) >= MAX_ACTION_ITEMS:
            break
        action = ACTION_ITEM_TEMPLATE.format(category=cid, company=u.company, tag=u.tag)
        if action not in actions:
            actions.append(action)
    report.action_items = actions


def fill_report_from_sources(
    report: WeeklyReport,
    sources: Sequence[SourceItem],
    config: ResearchConfig,
    company_hq: Mapping[str, str],
    *,
    max_items_per_company: int = 1,
) -> WeeklyReport:
    """카테고리별로 근거에만 있는 (해외 본사로 확인되지 않은) 회사를 추가한다."""
    out = report.model_copy(deep=True)
    cap = config.max_companies_cap
    per_company = max(1, int(max_items_per_company))

    for cid in config.category_ids:
        kept = _dedupe_existing(out.category_updates.get(cid, []), per_company)
        companies = {company_match_key(u.company) for u in kept}
        used_urls = {normalize_url(u.url) for u in kept if u.url}

        for source in sources:
            if len(companies) >= cap:
                break
            if source.category != cid or is_known_foreign(source.company, company_hq):
                continue
            key = company_match_key(source.company)
            if key in companies or normalize_url(source.url) in used_urls:
                continue
            kept.append(_update_from_source(source))
            companies.add(key)
            used_urls.add(normalize_url(source.url))
        out.category_updates[cid] = kept

    _top_up_action_items(out)
    return out


def _is_overseas_source(source: SourceItem, company_hq: Mapping[str, str]) -> bool:
    country = resolve_country(source.company, company_hq)
    if country is not None:
        return is_known_foreign(source.company, company_hq)
    # HQ 미확인: 한글 없이 라틴 문자만 있는 이름은 해외로 간주
    return not has_hangul(source.company) and has_latin(source.company)


def _overseas_key(company: str, title: str) -> str:
    return f"{company_match_key(company)}|{title.strip().lower()}"


def fill_overseas_from_sources(
    report: WeeklyReport,
    sources: Sequence[SourceItem],
    company_hq: Mapping[str, str],
    *,
    min_items: int = 10,
    max_items: int = 15,
) -> WeeklyReport:
    """해외 섹션을 회사 다양성 우선으로 min~max 사이까지 채운다."""
    out = report.model_copy(deep=True)
    bucket = list(out.overseas_competitor_updates)[:max_items]
    seen = {_overseas_key(u.company, u.title) for u in bucket}
    seen_companies = {company_match_key(u.company) for u in bucket}
    seen_urls = {normalize_url(u.url) for u in bucket if u.url}

    candidates = [s for s in sources if _is_overseas_source(s, company_hq)]

    def _append(source: SourceItem) -> bool:
        key = _overseas_key(source.company, source.title)
        url_key = normalize_url(source.url)
        if key in seen or url_key in seen_urls:
            return False
        seen.add(key)
        seen_urls.add(url_key)
        seen_companies.add(company_match_key(source.company))
        bucket.append(
            OverseasUpdate(
                company=source.company,
                country=resolve_country(source.company, company_hq),
                category=source.category,
                tag=infer_tag(source.title),
                title=source.title,
                url=source.url,
                insight=source.note,
            )
        )
        return True

    # 1차: 아직 없는 회사부터
    for source in candidates:
        if len(bucket) >= max_items:
            break
        if company_match_key(source.company) in seen_companies:
            continue
        _append(source)

    # 2차: 최소 개수에 못 미치면 같은 회사의 다른 기사도 허용
    if len(bucket) < min_items:
        for source in candidates:
            if len(bucket) >= max_items:
                break
            _append(source)

    out.overseas_competitor_updates = bucket[:max_items]
    return out

