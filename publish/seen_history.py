"""Weekly dedup ledger (seen-history).

형식: ``{"version": 1, "weeks": {"YYYY-Www": {"urls": [...], "updated_at": iso8601}}}``.
실행 시작 시 1회 로드하고, 발송 성공 후에만 갱신/저장한다.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Set

from analysis.models.domain import WeeklyReport
from ingestion.services.url_normalizer import normalize_url
from ingestion.utils.logging import get_logger
from publish.ledger_store import BlobStore

HISTORY_VERSION = 1

History = Dict[str, Any]


def empty_history() -> History:
    return {"version": HISTORY_VERSION, "weeks": {}}


def week_key(day: date) -> str:
    """ISO 주차 키 (예: 2025-W03). 사전순 정렬이 시간순과 일치한다."""
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def parse_history(raw: Optional[str]) -> History:
    """손상되었거나 버전이 다르면 빈 이력을 돌려준다."""
    if not raw:
        return empty_history()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return empty_history()
    if not isinstance(data, dict) or data.get("version") != HISTORY_VERSION:
        return empty_history()
    weeks: Dict[str, Any] = {}
    for key, entry in (data.get("weeks") or {}).items() if isinstance(data.get("weeks"), dict) else []:
        if not isinstance(entry, dict):
            continue
        urls = [u for u in entry.get("urls") or [] if isinstance(u, str)]
        week: Dict[str, Any] = {"urls": urls}
        if isinstance(entry.get("updated_at"), str):
            week["updated_at"] = entry["updated_at"]
        weeks[str(key)] = week
    return {"version": HISTORY_VERSION, "weeks": weeks}


def get_seen_urls(history: History, week: str) -> Set[str]:
    entry = (history.get("weeks") or {}).get(week) or {}
    return {normalize_url(u) for u in entry.get("urls") or [] if u}


def _is_new(url: Optional[str], seen: Set[str]) -> bool:
    # 링크 없는 항목은 중복 판정 대상이 아니다.
    return not url or normalize_url(url) not in seen


def filter_report_by_seen(report: WeeklyReport, seen: Set[str]) -> WeeklyReport:
    """이미 발송한 URL의 항목을 제거한 사본."""
    out = report.model_copy(deep=True)
    out.top_highlights = [h for h in out.top_highlights if _is_new(h.link, seen)]
    out.category_updates = {cid: [u for u in items if _is_new(u.url, seen)] for cid, items in out.category_updates.items()}
    out.overseas_competitor_updates = [u for u in out.overseas_competitor_updates if _is_new(u.url, seen)]
    out.hiring_signals = [s for s in out.hiring_signals if _is_new(s.url, seen)]
    return out


def count_report_items(report: WeeklyReport) -> int:
    return (
        len(report.top_highlights)
        + report.total_updates()
        + len(report.overseas_competitor_updates)
        + len(report.hiring_signals)
    )


def add_report_urls(
    history: History,
    week: str,
    report: WeeklyReport,
    *,
    now: Optional[datetime] = None,
) -> History:
    """리포트의 정규화 URL을 해당 주차 항목에 합친 새 이력."""
    out: History = json.loads(json.dumps(history)) if history else empty_history()
    weeks = out.setdefault("weeks", {})
    existing = [normalize_url(u) for u in (weeks.get(week) or {}).get("urls") or []]
    merged = list(dict.fromkeys([*existing, *(normalize_url(u) for u in report.all_urls())]))
    weeks[week] = {
        "urls": merged,
        "updated_at": (now or datetime.now(timezone.utc)).isoformat(),
    }
    return out


def prune_history(history: History, keep_weeks: int) -> History:
    """최근 ``keep_weeks``개 주차만 남긴다 (키 사전순)."""
    out: History = json.loads(json.dumps(history)) if history else empty_history()
    weeks = out.setdefault("weeks", {})
    keys = sorted(weeks)
    for key in keys[: max(0, len(keys) - max(0, keep_weeks))]:
        del weeks[key]
    return out


@dataclass
class SeenHistoryLedger:
    store: BlobStore
    path: str
    keep_weeks: int = 8

    def load(self) -> History:
        logger = get_logger(__name__)
        try:
            raw = self.store.read(self.path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("ledger.load_failed", extra={"path": self.path, "error": str(exc)})
            return empty_history()
        history = parse_history(raw)
        logger.info("ledger.loaded", extra={"path": self.path, "weeks": len(history["weeks"])})
        return history

    def save(self, history: History) -> History:
        pruned = prune_history(history, self.keep_weeks)
        self.store.write(self.path, json.dumps(pruned, ensure_ascii=False, indent=2) + "\n")
        get_logger(__name__).info("ledger.saved", extra={"path": self.path, "weeks": len(pruned["weeks"])})
        return pruned

    def record(self, history: History, week: str, report: WeeklyReport) -> History:
        return self.save(add_report_urls(history, week, report))
