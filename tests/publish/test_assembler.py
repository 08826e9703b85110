from __future__ import annotations

import json
from datetime import date
from typing import List

import httpx
import pytest

from analysis.models.domain import WeeklyReport
from ingestion.connectors.base import ConfigurationError, EvidenceProvider
from ingestion.connectors.grounded_search import GroundedSearchProvider
from ingestion.models.domain import CollectionMeta, EvidenceBatch, SourceItem
from ingestion.services.url_prober import UrlProber
from ingestion.settings import Settings
from publish.assembler import ReportPipeline, attach_homepages, build_provider
from publish.ledger_store import InMemoryBlobStore
from publish.seen_history import SeenHistoryLedger
from tests.fakes import FakeOracle, make_config, src

DAY = date(2025, 1, 13)
HQ_MARKER = "company headquarters countries"
HOME_MARKER = "official company homepages"
REPORT_MARKER = "You MUST ONLY use the provided source list"

SOURCES = [
    src("채널코퍼레이션", "CAT-A", "채널톡 AI 출시", "https://a.example/ch"),
    src("리드포인트", "CAT-B", "리드포인트 투자 유치", "https://b.example/lp"),
    src("Intercom", "CAT-A", "Intercom launches Fin", "https://i.example/1"),
]

REPORT = json.dumps(
    {
        "report_date": "2025-01-13",
        "week_number": 3,
        "category_updates": {
            "CAT-A": [
                {"company": "채널코퍼레이션", "tag": "출시", "title": "채널톡 AI 출시", "url": "https://a.example/ch"},
                {"company": "Intercom", "tag": "출시", "title": "Intercom launches Fin", "url": "https://i.example/1"},
            ],
            "CAT-B": [{"company": "리드포인트", "tag": "투자", "title": "투자 유치", "url": "https://b.example/lp"}],
        },
        "action_items": ["a", "b", "c"],
    },
    ensure_ascii=False,
)
HQ = json.dumps(
    {"company_hq": {"채널코퍼레이션": "South Korea", "리드포인트": "South Korea", "Intercom": "USA", "세일즈랩": "South Korea"}},
    ensure_ascii=False,
)
HOMEPAGES = json.dumps(
    {
        "company_homepages": {
            "채널코퍼레이션": "https://channel.io",
            "리드포인트": "https://leadpoint.example",
            "Intercom": "https://intercom.com",
        }
    },
    ensure_ascii=False,
)


class _StaticProvider(EvidenceProvider):
    name = "static"

    def __init__(self, sources: List[SourceItem]) -> None:
        self._sources = sources
        self.calls = 0

    def collect(self, config, report_date, *, retry_hint=None) -> EvidenceBatch:
        self.calls += 1
        return EvidenceBatch(sources=list(self._sources), meta=CollectionMeta(provider=self.name, queries=["q1"]))


def _oracle(homepages=HOMEPAGES, report=REPORT) -> FakeOracle:
    return FakeOracle([(HQ_MARKER, HQ), (HOME_MARKER, homepages), (REPORT_MARKER, report)])


def _ledger(seen_urls=()) -> SeenHistoryLedger:
    store = InMemoryBlobStore()
    if seen_urls:
        store.write("seen.json", json.dumps({"version": 1, "weeks": {"2025-W03": {"urls": list(seen_urls)}}}))
    return SeenHistoryLedger(store, "seen.json")


def test_pipeline_splits_overseas_dedupes_and_attaches_homepages():
    ledger = _ledger(["https://b.example/lp"])
    provider = _StaticProvider(SOURCES)

    assembled = ReportPipeline(make_config(), _oracle(), provider, ledger).run(DAY)

    report = assembled.report
    assert assembled.week_key == "2025-W03"
    assert [u.company for u in report.category_updates["CAT-A"]] == ["채널코퍼레이션"]
    assert report.category_updates["CAT-B"] == []
    assert [(u.company, u.country) for u in report.overseas_competitor_updates] == [("Intercom", "USA")]
    assert report.company_homepages == {"채널코퍼레이션": "https://channel.io", "Intercom": "https://intercom.com"}
    assert assembled.counters.as_dict() == {
        "sources_collected": 3,
        "search_queries": 1,
        "dropped_urls": 0,
        "rewritten_urls": 0,
        "deduped_items": 1,
        "attempts": 1,
    }
    assert assembled.history["weeks"]["2025-W03"]["urls"] == ["https://b.example/lp"]
    assert provider.calls == 1


def test_pipeline_never_writes_history():
    ledger = _ledger(["https://b.example/lp"])
    before = ledger.store.read("seen.json")

    ReportPipeline(make_config(), _oracle(), _StaticProvider(SOURCES), ledger).run(DAY)

    assert ledger.store.read("seen.json") == before


def test_pipeline_drops_dead_links_with_injected_prober():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ch":
            return httpx.Response(404, headers={"content-type": "text/html"}, text="gone")
        return httpx.Response(200, headers={"content-type": "text/html"}, text="<p>ok</p>")

    prober = UrlProber(httpx.Client(transport=httpx.MockTransport(handler)))
    config = make_config(verify_source_urls=True, homepage_fallback_detection=False)

    assembled = ReportPipeline(config, _oracle(), _StaticProvider(SOURCES), _ledger(), prober=prober).run(DAY)

    assert assembled.report.category_updates["CAT-A"] == []
    assert assembled.counters.dropped_urls == 1
    assert "채널코퍼레이션" not in assembled.report.company_homepages
    assert assembled.counters.deduped_items == 0


def test_pipeline_backfills_short_category_and_looks_up_new_homepages():
    searches = []

    def search(prompt: str) -> List[SourceItem]:
        searches.append(prompt)
        return [src("세일즈랩", "CAT-B", "세일즈랩 신규 출시", "https://s.example/1")]

    homepages = [
        json.dumps({"company_homepages": {"채널코퍼레이션": "https://channel.io"}}, ensure_ascii=False),
        json.dumps({"company_homepages": {"세일즈랩": "https://saleslab.example"}}, ensure_ascii=False),
    ]
    only_a = json.dumps(
        {
            "report_date": "2025-01-13",
            "week_number": 3,
            "category_updates": {
                "CAT-A": [{"company": "채널코퍼레이션", "tag": "출시", "title": "채널톡 AI 출시", "url": "https://a.example/ch"}],
            },
            "action_items": ["a", "b", "c"],
        },
        ensure_ascii=False,
    )
    oracle = _oracle(homepages=homepages, report=only_a)
    provider = _StaticProvider(SOURCES[:1])

    assembled = ReportPipeline(make_config(), oracle, provider, _ledger(), search_sources=search).run(DAY)

    assert len(searches) == 1
    assert [u.company for u in assembled.report.category_updates["CAT-B"]] == ["세일즈랩"]
    assert assembled.report.company_homepages["세일즈랩"] == "https://saleslab.example"
    assert assembled.counters.sources_collected == 2
    assert len(oracle.prompts_containing(HOME_MARKER)) == 2


def test_grounded_provider_enables_backfill_search():
    oracle = FakeOracle()
    provider = GroundedSearchProvider(oracle, category_ids=["CAT-A", "CAT-B"])

    pipeline = ReportPipeline(make_config(), oracle, provider, _ledger())

    assert pipeline._search_sources == provider.search_sources


def test_non_grounded_provider_still_backfills_through_web_search():
    backfill = json.dumps(
        {"sources": [{"company": "세일즈랩", "category": "CAT-B", "title": "세일즈랩 신규 출시", "url": "https://s.example/1"}]},
        ensure_ascii=False,
    )
    only_a = json.dumps(
        {
            "report_date": "2025-01-13",
            "week_number": 3,
            "category_updates": {
                "CAT-A": [{"company": "채널코퍼레이션", "tag": "출시", "title": "채널톡 AI 출시", "url": "https://a.example/ch"}],
            },
            "action_items": ["a", "b", "c"],
        },
        ensure_ascii=False,
    )
    oracle = FakeOracle(
        [
            ("headquartered in South Korea for these categories only", backfill),
            (HQ_MARKER, HQ),
            (HOME_MARKER, HOMEPAGES),
            (REPORT_MARKER, only_a),
        ]
    )

    assembled = ReportPipeline(make_config(), oracle, _StaticProvider(SOURCES[:1]), _ledger()).run(DAY)

    backfill_calls = [ws for p, ws in oracle.calls if "headquartered in South Korea for these categories only" in p]
    assert backfill_calls == [True]
    assert [u.company for u in assembled.report.category_updates["CAT-B"]] == ["세일즈랩"]
    assert assembled.counters.sources_collected == 2


def test_empty_evidence_uses_one_shot_report_and_looks_up_its_companies():
    one_shot = json.dumps(
        {
            "report_date": "2025-01-13",
            "week_number": 3,
            "category_updates": {
                "CAT-A": [
                    {"company": "채널코퍼레이션", "tag": "출시", "title": "채널톡 AI 출시", "url": "https://a.example/ch"},
                    {"company": "Intercom", "tag": "출시", "title": "Intercom launches Fin", "url": "https://i.example/1"},
                ],
            },
            "action_items": ["a", "b", "c"],
        },
        ensure_ascii=False,
    )
    oracle = FakeOracle(
        [
            (HQ_MARKER, HQ),
            (HOME_MARKER, HOMEPAGES),
            ("You MUST use grounded web search to research the last", one_shot),
        ],
        grounded_urls=["https://a.example/ch", "https://i.example/1"],
    )

    assembled = ReportPipeline(make_config(), oracle, _StaticProvider([]), _ledger()).run(DAY)

    report = assembled.report
    assert [u.company for u in report.category_updates["CAT-A"]] == ["채널코퍼레이션"]
    assert [(u.company, u.country) for u in report.overseas_competitor_updates] == [("Intercom", "USA")]
    assert report.company_homepages == {"채널코퍼레이션": "https://channel.io", "Intercom": "https://intercom.com"}
    hq_prompts = oracle.prompts_containing(HQ_MARKER)
    assert len(hq_prompts) == 1
    assert "- Intercom" in hq_prompts[0]


def test_attach_homepages_matches_on_normalized_company_name():
    report = WeeklyReport.model_validate(
        {
            "report_date": "2025-01-13",
            "week_number": 3,
            "overseas_competitor_updates": [{"company": "Intercom", "tag": "x", "title": "t", "url": "https://i.example/1"}],
        }
    )

    out = attach_homepages(report, {"intercom": "https://intercom.com", "Gong": "https://gong.io"})

    assert out.company_homepages == {"Intercom": "https://intercom.com"}
    assert report.company_homepages == {}


def test_build_provider_by_name(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = Settings()

    provider = build_provider(settings, make_config(), FakeOracle())

    assert isinstance(provider, GroundedSearchProvider)
    with pytest.raises(ConfigurationError):
        build_provider(settings, make_config(), FakeOracle(), name="carrier_pigeon")
