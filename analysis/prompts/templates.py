"""프롬프트 템플릿/빌더.

오라클에게 구조화(JSON) 출력을 요청하는 프롬프트를 생성한다. 모든 프롬프트는
"JSON ONLY" 규칙과 URL 날조 금지 규칙을 포함한다.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Iterable, List, Mapping, Optional, Sequence

from ingestion.models.domain import SourceItem
from ingestion.research_config import ResearchConfig

URL_RULES = (
    "Rules for URLs:\n"
    "- NEVER fabricate URLs. Do not guess URL slugs or domains.\n"
    "- Only output URLs you actually found in search results or official pages."
)


def _schema_example(category_ids: Sequence[str]) -> str:
    updates = {cid: [] for cid in category_ids}
    if category_ids:
        updates[category_ids[0]] = [
            {"company": "...", "tag": "...", "title": "...", "url": "https://...", "insight": "..."}
        ]
    example = {
        "report_date": "YYYY-MM-DD",
        "week_number": 2,
        "top_highlights": [
            {
                "company": "...",
                "category": category_ids[0] if category_ids else "CAT-A",
                "title": "...",
                "insight": "...",
                "importance_score": 5,
                "link": "https://...",
            }
        ],
        "category_updates": updates,
        "overseas_competitor_updates": [
            {"company": "...", "country": "USA", "tag": "...", "title": "...", "url": "https://...", "insight": "..."}
        ],
        "hiring_signals": [
            {"company": "...", "position": "...", "strategic_inference": "...", "url": "https://..."}
        ],
        "action_items": ["..."],
    }
    return json.dumps(example, ensure_ascii=False)


SOURCES_SCHEMA = (
    '{"sources":[{"company":"...","category":"CAT-A","title":"...","url":"https://...",'
    '"published_date":"YYYY-MM-DD","quote":"(optional) short verbatim snippet","note":"(optional) why relevant"}]}'
)


def _category_lines(config: ResearchConfig, *, only: Optional[Iterable[str]] = None) -> List[str]:
    wanted = set(only) if only is not None else None
    lines: List[str] = []
    for c in config.categories:
        if wanted is not None and c.id not in wanted:
            continue
        suffix = f" ({c.description})" if c.description else ""
        lines.append(f"- {c.id}: {c.name}{suffix}")
    return lines


def _watchlist_lines(config: ResearchConfig) -> List[str]:
    return [
        f"- {w.company} (primary: {w.category_id}) keywords: {', '.join(w.keywords) if w.keywords else '(none)'}"
        for w in config.watchlist
    ]


def _excluded_lines(config: ResearchConfig, extra: Iterable[str] = ()) -> List[str]:
    names = list(dict.fromkeys([*config.excluded_companies, *extra]))
    return [f"- {n}" for n in names] or ["- (none)"]


def _company_mix_line(config: ResearchConfig) -> str:
    if not config.prefer_startups:
        return "- Company mix is flexible."
    return (
        "- Prefer startups/scale-ups over large enterprises. For EACH category, include at least "
        f"{config.min_startups_per_category} startups/scale-ups when possible, and include at most "
        f"{config.max_enterprises_per_category} large enterprises."
    )


def build_sources_prompt(config: ResearchConfig, report_date: date, week_number: int) -> str:
    """근거 수집(웹 검색) 프롬프트."""
    lines = [
        "You are a market intelligence researcher.",
        f"You MUST use grounded web search to collect sources from the last {config.lookback_days} days only.",
        "Return ONLY JSON. Do not include markdown. Do not return an array.",
        "",
        "Task: build a source list for a Korean weekly competitor newsletter.",
        f"Report date: {report_date.isoformat()}",
        f"Week number: {week_number}",
        "",
        "Categories (use these exact IDs):",
        *_category_lines(config),
        "",
        "Coverage rules:",
        f"- For EACH category, collect sources for at least {config.min_companies_per_category} distinct companies when possible.",
        _company_mix_line(config),
        "- Also try to include a small set of relevant overseas competitors (headquartered outside Korea) across categories when possible, without sacrificing category coverage.",
        "- Exclude these companies unless absolutely necessary:",
        *_excluded_lines(config),
        "- Use ONLY companies in the watchlist (do not introduce new companies)."
        if config.watchlist_only
        else "- You MAY introduce additional relevant companies beyond the watchlist, but only if sources exist.",
        "",
        "Watchlist (start here):",
        *_watchlist_lines(config),
        "",
        "Output JSON schema:",
        SOURCES_SCHEMA,
        "",
        URL_RULES,
        "- Prefer official announcements, reputable news, and official hiring pages.",
    ]
    return "\n".join(lines)


def build_retry_hint(
    *,
    attempt: int,
    missing_categories: Sequence[str],
    short_categories: Mapping[str, int],
    min_companies: int,
    target_total: int,
    current_total: int,
) -> str:
    """재시도 시 기본 프롬프트 뒤에 붙이는 보강 지시문 (시도 횟수에 따라 강도 상승)."""
    lines = [
        "",
        f"IMPORTANT RETRY (attempt {attempt}): the previous source list did not meet coverage.",
        f"- You returned {current_total} sources; return at least {target_total} sources in total.",
    ]
    if missing_categories:
        lines.append(f"- These categories had NO sources at all: {', '.join(missing_categories)}.")
    for cat, count in short_categories.items():
        lines.append(
            f"- {cat}: only {count} distinct Korean companies; find at least {min_companies} distinct Korean companies."
        )
    if attempt >= 3:
        lines.append("- Broaden the search: smaller startups, regional press, official blogs and hiring pages are acceptable.")
    lines.append("- Keep every URL real; do not repeat URLs you already returned.")
    return "\n".join(lines)


def build_report_from_sources_prompt(
    config: ResearchConfig,
    report_date: date,
    week_number: int,
    sources: Sequence[SourceItem],
    allowed_urls: Sequence[str],
    *,
    strict_coverage: Optional[Sequence[str]] = None,
) -> str:
    """근거 목록만으로 리포트를 작성하게 하는 프롬프트 (웹 검색 금지)."""
    category_ids = config.category_ids
    sources_json = json.dumps(
        {"sources": [s.model_dump(exclude_none=True) for s in sources]}, ensure_ascii=False
    )
    lines = [
        "You are a market intelligence analyst writing a weekly competitor newsletter in Korean.",
        "You MUST ONLY use the provided source list. Do NOT browse the web or use any additional sources.",
        "Return ONLY a single JSON object matching the report schema. Do not include markdown or extra text. Do not return an array.",
        "",
        f"Report date: {report_date.isoformat()}",
        f"Week number: {week_number}",
        "",
        "Categories (use these exact IDs):",
        *[f"- {c.id}: {c.name}" for c in config.categories],
        "",
        "Allowed URLs (you MUST use ONLY these URLs for link/url fields; if no suitable URL exists for an item, omit the item):",
        *[f"- {u}" for u in allowed_urls],
        "",
        "Source list JSON (use this as evidence; do not invent anything beyond it):",
        sources_json,
        "",
        "Output requirements:",
        "- For each included item, include a source link (url/link) from Allowed URLs exactly.",
        '- Provide an "insight" that explains strategic meaning (Insight First).',
        f"- For EACH category, include updates from at least {config.min_companies_per_category} distinct companies when the sources allow, at most {config.max_companies_cap}.",
        "- Include overseas_competitor_updates about competitors headquartered outside Korea (if clearly identifiable), using only Allowed URLs; otherwise return an empty array.",
        "- importance_score: 1-5; pick top_highlights as the 3 most important items.",
        "- Provide 3-6 action_items (array of strings).",
        "- Do NOT include company_homepages here; it will be attached separately.",
    ]
    if strict_coverage:
        lines += [
            "",
            "STRICT COVERAGE: your previous answer left these categories empty although the sources contain items for them:",
            *[f"- {cid}" for cid in strict_coverage],
            "Every category that has sources MUST have at least one update, and action_items MUST contain at least 3 strings.",
        ]
    lines += ["", "Report schema (keys must match exactly):", _schema_example(category_ids)]
    return "\n".join(lines)


def build_weekly_report_prompt(config: ResearchConfig, report_date: date, week_number: int) -> str:
    """근거 목록 없이 웹 검색으로 리포트를 한 번에 작성하는 프롬프트."""
    lines = [
        "You are a market intelligence analyst writing a weekly competitor newsletter in Korean.",
        f"You MUST use grounded web search to research the last {config.lookback_days} days only.",
        "Return ONLY a single JSON object matching the report schema. Do not include markdown or extra text. Do not return an array.",
        "",
        f"Report date: {report_date.isoformat()}",
        f"Week number: {week_number}",
        "",
        "Categories (use these exact IDs):",
        *_category_lines(config),
        "",
        "Coverage rules:",
        f"- For EACH category, include updates from at least {config.min_companies_per_category} distinct companies (if any meaningful updates exist).",
        f"- Keep per-category to at most {config.max_companies_cap} companies to stay readable.",
        "- Use ONLY companies in the watchlist (do not introduce new companies)."
        if config.watchlist_only
        else "- You MAY introduce additional relevant companies beyond the watchlist to meet coverage, but only if grounded sources exist.",
        _company_mix_line(config),
        "- Exclude these companies unless they are absolutely necessary for context:",
        *_excluded_lines(config),
        "",
        "Watchlist companies to research:",
        *_watchlist_lines(config),
        "",
        "Output requirements:",
        '- For each update: include a short title and a tag like "투자/제휴/기능/채용/특허/가격/글로벌".',
        '- Provide an "insight" that explains strategic meaning (Insight First).',
        "- Include overseas_competitor_updates about competitors headquartered outside Korea; if the HQ country is unclear, omit the company.",
        "- Provide a source link (url/link) for every item; if you cannot find a credible source URL, omit that item.",
        f"- Include at least {config.min_source_urls} unique source URLs overall across the report."
        if config.min_source_urls > 0
        else "- Include source URLs whenever possible.",
        "- importance_score: 1-5; pick top_highlights as the 3 most important items.",
        "- Provide 3-6 action_items (array of strings).",
        "",
        URL_RULES,
        "",
        "Report schema (keys must match exactly):",
        _schema_example(config.category_ids),
    ]
    return "\n".join(lines)


def build_repair_prompt(
    bad_output: str,
    category_ids: Sequence[str],
    allowed_urls: Sequence[str],
    error: str,
) -> str:
    """스키마 위반 출력을 재포맷하는 1회성 복구 프롬프트."""
    lines = [
        "Reformat the following text into valid JSON matching the schema below.",
        "Do NOT add facts. Do NOT add companies or items. Preserve every URL exactly as written.",
        "Return ONLY the JSON object.",
        "",
        f"Validation error: {error}",
        "",
        "Allowed URLs (any other URL must be removed):",
        *([f"- {u}" for u in allowed_urls] or ["- (none)"]),
        "",
        "Schema:",
        _schema_example(category_ids),
        "",
        "Text to reformat:",
        bad_output,
    ]
    return "\n".join(lines)


def build_company_hq_prompt(companies: Sequence[str]) -> str:
    lines = [
        "You are identifying company headquarters countries.",
        "You MUST use grounded web search.",
        "Return ONLY JSON, no markdown, no extra text.",
        "",
        "Task: for each company below, return the country where the company is headquartered.",
        'Use "South Korea" for Korean companies. If you are not confident, omit the company.',
        "",
        "Companies:",
        *[f"- {c}" for c in companies],
        "",
        "Output schema:",
        '{"company_hq":{"회사명":"South Korea","Other Co":"USA"}}',
    ]
    return "\n".join(lines)


def build_company_homepages_prompt(companies: Sequence[str]) -> str:
    lines = [
        "You are collecting official company homepages.",
        "You MUST use grounded web search.",
        "Return ONLY JSON, no markdown, no extra text.",
        "",
        "Task: for each company below, find the official homepage URL (not a news article, not a social profile).",
        "If you cannot confidently find the official homepage, omit that company from the output.",
        "",
        "Companies:",
        *[f"- {c}" for c in companies],
        "",
        "Output schema:",
        '{"company_homepages":{"회사명":"https://official-domain.tld","다른회사":"https://..."}}',
        "",
        URL_RULES,
    ]
    return "\n".join(lines)


def build_company_discovery_prompt(
    config: ResearchConfig,
    report_date: date,
    wanted: Mapping[str, int],
    known_companies: Iterable[str],
) -> str:
    """국내 신규 회사 발굴 프롬프트. ``wanted``는 카테고리별 필요 회사 수."""
    lines = [
        "You are a market intelligence researcher discovering Korean companies.",
        f"You MUST use grounded web search and consider news from the last {config.lookback_days} days before {report_date.isoformat()}.",
        "Return ONLY JSON, no markdown, no extra text.",
        "",
        "Find companies headquartered in South Korea that had public news in the window, for these categories:",
        *[f"- {cid}: up to {n} companies" for cid, n in wanted.items()],
        "",
        "Categories:",
        *_category_lines(config, only=wanted.keys()),
        "",
        "Do NOT return any of these companies:",
        *_excluded_lines(config, known_companies),
        "",
        "Output schema:",
        '{"companies":[{"company":"회사명","category_id":"CAT-A","aliases":["English Name","domain.com"]}]}',
    ]
    return "\n".join(lines)


def build_backfill_sources_prompt(
    config: ResearchConfig,
    report_date: date,
    short_categories: Mapping[str, int],
    known_companies: Iterable[str],
) -> str:
    """부족한 카테고리에 한정한 국내 근거 보강 프롬프트."""
    lines = [
        "You are a market intelligence researcher.",
        f"You MUST use grounded web search to collect sources from the last {config.lookback_days} days before {report_date.isoformat()} only.",
        "Return ONLY JSON. Do not include markdown. Do not return an array.",
        "",
        "Find news about companies headquartered in South Korea for these categories only:",
        *[f"- {cid}: at least {n} more distinct companies" for cid, n in short_categories.items()],
        "",
        "Categories:",
        *_category_lines(config, only=short_categories.keys()),
        "",
        "These companies are already covered; find DIFFERENT companies:",
        *_excluded_lines(config, known_companies),
        "",
        "Output JSON schema:",
        SOURCES_SCHEMA,
        "",
        URL_RULES,
    ]
    return "\n".join(lines)


def build_overseas_sources_prompt(
    config: ResearchConfig,
    report_date: date,
    needed: int,
    known_companies: Iterable[str],
) -> str:
    """해외(한국 외 본사) 경쟁사 근거 보강 프롬프트."""
    global_names = [w.company for w in config.global_watchlist]
    lines = [
        "You are a market intelligence researcher.",
        f"You MUST use grounded web search to collect sources from the last {config.lookback_days} days before {report_date.isoformat()} only.",
        "Return ONLY JSON. Do not include markdown. Do not return an array.",
        "",
        f"Find at least {needed} recent updates from competitors headquartered OUTSIDE South Korea.",
        "Assign each to the closest category:",
        *_category_lines(config),
    ]
    if global_names:
        lines += ["", "Start with these overseas companies:", *[f"- {n}" for n in global_names]]
    lines += [
        "",
        "Avoid these already covered items' companies when possible:",
        *_excluded_lines(config, known_companies),
        "",
        "Output JSON schema:",
        SOURCES_SCHEMA,
        "",
        URL_RULES,
    ]
    return "\n".join(lines)
