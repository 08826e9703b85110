"""Report schema validation and one-shot repair.

순서: 관대한 JSON 파싱 → 루트 선택 → placeholder 보정 → pydantic 검증.
그래도 실패하면 오라클에 1회 재포맷을 요청하고, 원본 출력에 있던 URL만 허용한다.
"""

from __future__ import annotations

import copy
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from analysis.models.domain import WeeklyReport
from analysis.prompts.templates import build_repair_prompt
from ingestion.services.url_normalizer import clean_http_url, normalize_url
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError, Oracle
from llm.parsing import JsonParseError, normalize_root_json, parse_json_lenient

PLACEHOLDER_COMPANY = "(회사명 미상)"
PLACEHOLDER_TITLE = "(제목 없음)"
PLACEHOLDER_INSIGHT = "(인사이트 없음)"
PLACEHOLDER_TAG = "(태그 없음)"
PLACEHOLDER_POSITION = "(직무 미상)"
PLACEHOLDER_INFERENCE = "(추론 없음)"

DEFAULT_IMPORTANCE = 3

_URL_RE = re.compile(r"https?://[^\s\"'<>\\)\]]+", re.IGNORECASE)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LIST_FIELDS = ("top_highlights", "overseas_competitor_updates", "hiring_signals", "action_items")
_DICT_FIELDS = ("category_updates", "company_homepages")


class ReportStructureError(ValueError):
    """오라클 출력이 리포트 스키마로 해석되지 않음."""


class ReportRepairError(RuntimeError):
    """복구 호출 후에도 스키마를 만족하지 못함 (실행 중단 사유)."""


def _fill(item: Dict[str, Any], key: str, placeholder: str) -> None:
    value = item.get(key)
    if not isinstance(value, str) or not value.strip():
        item[key] = placeholder


def coerce_importance(value: Any) -> int:
    """1~5 정수로 보정. 해석 불가하면 기본값 3."""
    if isinstance(value, bool):
        return DEFAULT_IMPORTANCE
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_IMPORTANCE
    return max(1, min(5, score))


def _dict_items(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(x) for x in value if isinstance(x, dict)]


def soften_report_payload(
    data: Dict[str, Any],
    *,
    category_ids: Sequence[str],
    report_date: date,
    week_number: int,
) -> Dict[str, Any]:
    """검증 전 입력을 관대하게 보정한 사본을 돌려준다."""
    out = copy.deepcopy(data)

    if not isinstance(out.get("report_date"), str) or not _DATE_RE.match(out["report_date"].strip()):
        out["report_date"] = report_date.isoformat()
    else:
        out["report_date"] = out["report_date"].strip()
    try:
        wn = int(out.get("week_number"))
        out["week_number"] = wn if 1 <= wn <= 53 else week_number
    except (TypeError, ValueError, OverflowError):
        out["week_number"] = week_number

    # 형식이 잘못된 컨테이너는 제거해 기본값(빈 배열/객체)이 적용되게 한다.
    for key in _LIST_FIELDS:
        if key in out and not isinstance(out[key], list):
            del out[key]
    for key in _DICT_FIELDS:
        if key in out and not isinstance(out[key], dict):
            del out[key]

    allowed = set(category_ids)
    highlights = []
    for h in _dict_items(out.get("top_highlights")):
        if not isinstance(h.get("category"), str) or h["category"] not in allowed:
            continue
        _fill(h, "company", PLACEHOLDER_COMPANY)
        _fill(h, "title", PLACEHOLDER_TITLE)
        _fill(h, "insight", PLACEHOLDER_INSIGHT)
        h["importance_score"] = coerce_importance(h.get("importance_score"))
        highlights.append(h)
    if "top_highlights" in out:
        out["top_highlights"] = highlights

    if "category_updates" in out:
        updates: Dict[str, List[Dict[str, Any]]] = {}
        for cid, items in out["category_updates"].items():
            if cid not in allowed:
                continue
            fixed = []
            for u in _dict_items(items):
                _fill(u, "company", PLACEHOLDER_COMPANY)
                _fill(u, "title", PLACEHOLDER_TITLE)
                _fill(u, "tag", PLACEHOLDER_TAG)
                fixed.append(u)
            updates[cid] = fixed
        out["category_updates"] = updates

    if "overseas_competitor_updates" in out:
        overseas = []
        for u in _dict_items(out["overseas_competitor_updates"]):
            _fill(u, "company", PLACEHOLDER_COMPANY)
            _fill(u, "title", PLACEHOLDER_TITLE)
            _fill(u, "tag", PLACEHOLDER_TAG)
            if not isinstance(u.get("country"), str):
                u.pop("country", None)
            if not isinstance(u.get("category"), str) or u["category"] not in allowed:
                u.pop("category", None)
            overseas.append(u)
        out["overseas_competitor_updates"] = overseas

    if "hiring_signals" in out:
        signals = []
        for s in _dict_items(out["hiring_signals"]):
            _fill(s, "company", PLACEHOLDER_COMPANY)
            _fill(s, "position", PLACEHOLDER_POSITION)
            _fill(s, "strategic_inference", PLACEHOLDER_INFERENCE)
            signals.append(s)
        out["hiring_signals"] = signals

    return out


def conform_categories(report: WeeklyReport, category_ids: Sequence[str]) -> WeeklyReport:
    """category_updates 키를 설정된 카테고리 집합과 정확히 일치시킨다."""
    copy_ = report.model_copy(deep=True)
    copy_.category_updates = {cid: list(report.category_updates.get(cid, [])) for cid in category_ids}
    return copy_


def validate_report(
    text: str,
    *,
    category_ids: Sequence[str],
    report_date: date,
    week_number: int,
) -> WeeklyReport:
    """Parse and validate oracle output; raise :class:`ReportStructureError` on failure."""
    try:
        parsed = parse_json_lenient(text)
    except JsonParseError as exc:
        raise ReportStructureError(str(exc)) from exc
    root = normalize_root_json(parsed)
    if root is None:
        raise ReportStructureError("리포트 루트가 JSON 객체가 아닙니다.")
    softened = soften_report_payload(
        root, category_ids=category_ids, report_date=report_date, week_number=week_number
    )
    try:
        report = WeeklyReport.model_validate(softened)
    except ValidationError as exc:
        raise ReportStructureError(str(exc)) from exc
    return conform_categories(report, category_ids)


def extract_urls(text: str) -> List[str]:
    """텍스트에 등장한 http(s) URL (등장 순서, 중복 제거)."""
    found = [m.group(0).rstrip(".,;") for m in _URL_RE.finditer(text or "")]
    return list(dict.fromkeys(u for u in found if clean_http_url(u)))


def enforce_allowed_urls(report: WeeklyReport, allowed_urls: Iterable[str]) -> WeeklyReport:
    """허용 목록(정규화 비교)에 없는 링크를 가진 항목을 제거한 사본.

    링크가 처음부터 없던 항목은 유지한다.
    """
    allowed = {normalize_url(u) for u in allowed_urls}

    def _keep(url: Optional[str]) -> bool:
        return not url or normalize_url(url) in allowed

    def _count(r: WeeklyReport) -> int:
        return len(r.top_highlights) + r.total_updates() + len(r.overseas_competitor_updates) + len(r.hiring_signals)

    out = report.model_copy(deep=True)
    out.top_highlights = [h for h in out.top_highlights if _keep(h.link)]
    out.category_updates = {cid: [u for u in items if _keep(u.url)] for cid, items in out.category_updates.items()}
    out.overseas_competitor_updates = [u for u in out.overseas_competitor_updates if _keep(u.url)]
    out.hiring_signals = [s for s in out.hiring_signals if _keep(s.url)]
    dropped = _count(report) - _count(out)
    if dropped:
        get_logger(__name__).warning("report.disallowed_items_dropped", extra={"count": dropped})
    return out


def validate_or_repair(
    text: str,
    oracle: Oracle,
    *,
    category_ids: Sequence[str],
    report_date: date,
    week_number: int,
) -> WeeklyReport:
    """검증하고, 실패 시 오라클 재포맷을 1회 시도한다. 실패하면 ReportRepairError."""
    logger = get_logger(__name__)
    try:
        return validate_report(text, category_ids=category_ids, report_date=report_date, week_number=week_number)
    except ReportStructureError as exc:
        first_error = str(exc)
    logger.warning("report.repair.start", extra={"error": first_error[:500]})

    allowed = extract_urls(text)
    prompt = build_repair_prompt(text, category_ids, allowed, first_error[:2000])
    try:
        response = oracle.generate(prompt, web_search=False)
    except LLMError as exc:
        raise ReportRepairError(f"리포트 복구 호출 실패: {exc}") from exc
    try:
        repaired = validate_report(
            response.text, category_ids=category_ids, report_date=report_date, week_number=week_number
        )
    except ReportStructureError as exc:
        raise ReportRepairError(f"리포트 복구 후에도 스키마 검증 실패: {exc}") from exc
    logger.info("report.repair.done", extra={"allowed_urls": len(allowed)})
    return enforce_allowed_urls(repaired, allowed)
