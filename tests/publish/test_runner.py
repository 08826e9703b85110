from __future__ import annotations

import json
from datetime import date

import pytest

from ingestion.connectors.base import ConfigurationError
from ingestion.connectors.grounded_search import GroundedSearchProvider
from ingestion.settings import Settings
from publish.runner import resolve_report_date, run_weekly_report
from tests.fakes import FakeOracle, make_config, sources_json, src

DAY = date(2025, 1, 13)

SOURCES = [
    src("채널코퍼레이션", "CAT-A", "채널톡 AI 출시", "https://a.example/ch"),
    src("리턴제로", "CAT-A", "리턴제로 투자 유치", "https://a.example/rz"),
    src("리드포인트", "CAT-B", "리드포인트 제휴", "https://b.example/lp"),
]
REPORT = json.dumps(
    {
        "report_date": "2025-01-13",
        "week_number": 3,
        "category_updates": {
            "CAT-A": [
                {"company": "채널코퍼레이션", "tag": "출시", "title": "채널톡 AI 출시", "url": "https://a.example/ch"},
                {"company": "리턴제로", "tag": "투자", "title": "투자 유치", "url": "https://a.example/rz"},
            ],
            "CAT-B": [{"company": "리드포인트", "tag": "제휴", "title": "제휴", "url": "https://b.example/lp"}],
        },
        "action_items": ["a", "b", "c"],
    },
    ensure_ascii=False,
)


def _oracle() -> FakeOracle:
    return FakeOracle(
        [
            ("Task: build a source list", sources_json(SOURCES)),
            ("You MUST ONLY use the provided source list", REPORT),
            ("company headquarters countries", '{"company_hq": {}}'),
            ("official company homepages", '{"company_homepages": {"리턴제로": "https://rtzr.ai"}}'),
        ]
    )


@pytest.fixture()
def settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "research.json"
    config_path.write_text(make_config().model_dump_json(), encoding="utf-8")
    return Settings(
        research_config_path=str(config_path),
        output_dir=str(tmp_path / "out"),
        seen_history_path=str(tmp_path / "state" / "seen.json"),
        seen_history_backend="file",
        evidence_provider="grounded_search",
        report_timezone="Asia/Seoul",
    )


def test_resolve_report_date(settings):
    assert resolve_report_date(settings, "2025-01-13") == DAY
    assert isinstance(resolve_report_date(settings), date)
    with pytest.raises(ConfigurationError):
        resolve_report_date(settings, "13/01/2025")


def test_resolve_report_date_rejects_unknown_timezone(settings):
    broken = settings.model_copy(update={"report_timezone": "Mars/Olympus"})

    with pytest.raises(ConfigurationError):
        resolve_report_date(broken)


def test_dry_run_writes_report_only(settings, tmp_path):
    result = run_weekly_report(DAY, settings=settings, oracle=_oracle(), dry_run=True)

    assert result.sent is False
    payload = json.loads(result.report_path.read_text(encoding="utf-8"))
    assert payload["report"]["company_homepages"] == {"리턴제로": "https://rtzr.ai"}
    assert not (tmp_path / "state" / "seen.json").exists()
    assert not (tmp_path / "out" / "outbox").exists()


def test_rerun_same_week_does_not_repeat_sent_items(settings, tmp_path):
    first = run_weekly_report(DAY, settings=settings, oracle=_oracle())

    assert first.sent is True
    assert (tmp_path / "out" / "outbox" / "2025-W03.json").exists()
    history = json.loads((tmp_path / "state" / "seen.json").read_text(encoding="utf-8"))
    assert sorted(history["weeks"]["2025-W03"]["urls"]) == [
        "https://a.example/ch",
        "https://a.example/rz",
        "https://b.example/lp",
    ]

    second = run_weekly_report(DAY, settings=settings, oracle=_oracle())

    payload = json.loads(second.report_path.read_text(encoding="utf-8"))
    assert payload["counters"]["deduped_items"] == 3
    assert payload["report"]["category_updates"] == {"CAT-A": [], "CAT-B": []}


def test_missing_config_file_is_configuration_error(settings):
    broken = settings.model_copy(update={"research_config_path": "missing.json"})

    with pytest.raises(ConfigurationError):
        run_weekly_report(DAY, settings=broken, oracle=_oracle(), dry_run=True)


def test_research_config_timezone_takes_precedence(settings, tmp_path):
    config_path = tmp_path / "mars.json"
    config_path.write_text(make_config(timezone="Mars/Olympus").model_dump_json(), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Mars/Olympus"):
        run_weekly_report(settings=settings, config_path=str(config_path), oracle=_oracle(), dry_run=True)
    assert isinstance(resolve_report_date(settings, timezone="UTC"), date)


class _ClosingProvider(GroundedSearchProvider):
    closed = False

    def close(self) -> None:
        self.closed = True


def test_provider_is_closed_after_run(settings, monkeypatch):
    oracle = _oracle()
    provider = _ClosingProvider(oracle, category_ids=["CAT-A", "CAT-B"])
    monkeypatch.setattr("publish.runner.build_provider", lambda *args, **kwargs: provider)

    run_weekly_report(DAY, settings=settings, oracle=oracle, dry_run=True)

    assert provider.closed is True


def test_outbox_subject_uses_config_prefix(settings, tmp_path):
    config_path = tmp_path / "named.json"
    config_path.write_text(make_config(email={"subject_prefix": "[주간 레이더]"}).model_dump_json(), encoding="utf-8")

    run_weekly_report(DAY, settings=settings, config_path=str(config_path), oracle=_oracle())

    outbox = json.loads((tmp_path / "out" / "outbox" / "2025-W03.json").read_text(encoding="utf-8"))
    assert outbox["subject"] == "[주간 레이더] 2025-01-13 (W3) 경쟁사 동향"
