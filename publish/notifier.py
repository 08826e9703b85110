from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from analysis.models.domain import WeeklyReport
from ingestion.utils.logging import get_logger
from publish.assembler import AssembledReport, RunCounters
from publish.seen_history import History, SeenHistoryLedger

REPORT_FILENAME = "report.json"
OUTBOX_DIRNAME = "outbox"
DEFAULT_SUBJECT_PREFIX = "[Market Radar]"


class ReportSender(Protocol):
    def send(self, report: WeeklyReport, counters: RunCounters, week_key: str) -> None: ...  # noqa: D401


@dataclass(frozen=True)
class DeliveryResult:
    report_path: Path
    sent: bool
    history: History


def report_payload(report: WeeklyReport, counters: Optional[RunCounters] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"report": report.model_dump(mode="json")}
    if counters is not None:
        payload["counters"] = counters.as_dict()
    return payload


def report_subject(report: WeeklyReport, prefix: str) -> str:
    return f"{prefix} {report.report_date} (W{report.week_number}) 경쟁사 동향"


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


class OutboxSender:
    """다운스트림 렌더러/메일러가 가져갈 outbox JSON을 쓴다."""

    def __init__(self, out_dir: str | Path, *, subject_prefix: str = DEFAULT_SUBJECT_PREFIX) -> None:
        self._dir = Path(out_dir) / OUTBOX_DIRNAME
        self._subject_prefix = subject_prefix

    def path_for(self, week_key: str) -> Path:
        return self._dir / f"{week_key}.json"

    def send(self, report: WeeklyReport, counters: RunCounters, week_key: str) -> None:
        payload = report_payload(report, counters)
        payload["week_key"] = week_key
        payload["subject"] = report_subject(report, self._subject_prefix)
        _write_json(self.path_for(week_key), payload)


def deliver_report(
    assembled: AssembledReport,
    sender: ReportSender,
    ledger: SeenHistoryLedger,
    out_dir: str | Path,
    *,
    dry_run: bool = False,
) -> DeliveryResult:
    """report.json을 남기고, dry-run이 아니면 발송 후 이력을 기록한다.

    발송이 실패하면 예외를 그대로 올리고 이력은 건드리지 않는다.
    """
    logger = get_logger(__name__)
    report_path = Path(out_dir) / REPORT_FILENAME
    _write_json(report_path, report_payload(assembled.report, assembled.counters))
    extra = {"week": assembled.week_key, "path": str(report_path), "dry_run": dry_run}
    logger.info("deliver.written", extra=extra)

    if dry_run:
        return DeliveryResult(report_path=report_path, sent=False, history=assembled.history)

    sender.send(assembled.report, assembled.counters, assembled.week_key)
    history = ledger.record(assembled.history, assembled.week_key, assembled.report)
    logger.info("deliver.sent", extra={**extra, "urls": len(assembled.report.all_urls())})
    return DeliveryResult(report_path=report_path, sent=True, history=history)
