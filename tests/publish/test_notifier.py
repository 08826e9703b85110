from __future__ import annotations

import json

import pytest

from analysis.models.domain import WeeklyReport
from publish.assembler import AssembledReport, RunCounters
from publish.ledger_store import InMemoryBlobStore
from publish.notifier import DEFAULT_SUBJECT_PREFIX, OutboxSender, deliver_report, report_payload, report_subject
from publish.seen_history import SeenHistoryLedger, empty_history


def _assembled() -> AssembledReport:
    report = WeeklyReport.model_validate(
        {
            "report_date": "2025-01-13",
            "week_number": 3,
            "category_updates": {
                "CAT-A": [{"company": "리턴제로", "tag": "출시", "title": "출시", "url": "https://r.example/1?utm_medium=x"}]
            },
            "action_items": ["a", "b", "c"],
        }
    )
    return AssembledReport(report=report, week_key="2025-W03", counters=RunCounters(sources_collected=4), history=empty_history())


class _FailingSender:
    def send(self, report, counters, week_key):
        raise OSError("smtp down")


def test_report_payload_contains_report_and_counters():
    assembled = _assembled()

    payload = report_payload(assembled.report, assembled.counters)

    assert payload["report"]["category_updates"]["CAT-A"][0]["company"] == "리턴제로"
    assert payload["counters"]["sources_collected"] == 4
    assert "counters" not in report_payload(assembled.report)


def test_dry_run_writes_report_without_sending_or_history(tmp_path):
    store = InMemoryBlobStore()
    ledger = SeenHistoryLedger(store, "seen.json")
    sender = OutboxSender(tmp_path)

    result = deliver_report(_assembled(), sender, ledger, tmp_path, dry_run=True)

    assert result.sent is False
    assert result.report_path == tmp_path / "report.json"
    assert json.loads(result.report_path.read_text(encoding="utf-8"))["report"]["week_number"] == 3
    assert not sender.path_for("2025-W03").exists()
    assert store.read("seen.json") is None


def test_send_writes_outbox_and_records_history(tmp_path):
    store = InMemoryBlobStore()
    ledger = SeenHistoryLedger(store, "seen.json")
    sender = OutboxSender(tmp_path)

    result = deliver_report(_assembled(), sender, ledger, tmp_path)

    assert result.sent is True
    outbox = json.loads(sender.path_for("2025-W03").read_text(encoding="utf-8"))
    assert outbox["week_key"] == "2025-W03"
    assert outbox["counters"]["sources_collected"] == 4
    saved = json.loads(store.read("seen.json"))
    assert saved["weeks"]["2025-W03"]["urls"] == ["https://r.example/1"]
    assert result.history == saved


def test_failed_send_leaves_history_untouched(tmp_path):
    store = InMemoryBlobStore()
    ledger = SeenHistoryLedger(store, "seen.json")

    with pytest.raises(OSError):
        deliver_report(_assembled(), _FailingSender(), ledger, tmp_path)

    assert (tmp_path / "report.json").exists()
    assert store.read("seen.json") is None


def test_outbox_payload_carries_subject(tmp_path):
    sender = OutboxSender(tmp_path, subject_prefix="[Radar]")

    sender.send(_assembled().report, RunCounters(), "2025-W03")

    outbox = json.loads(sender.path_for("2025-W03").read_text(encoding="utf-8"))
    assert outbox["subject"] == "[Radar] 2025-01-13 (W3) 경쟁사 동향"
    assert report_subject(_assembled().report, DEFAULT_SUBJECT_PREFIX).startswith("[Market Radar] ")
