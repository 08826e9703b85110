from datetime import date

import pytest

from ingestion.connectors.grounded_search import GroundedSearchProvider
from llm.client.openai_client import PermanentLLMError
from tests.fakes import FakeOracle, make_config, sources_json, src


def test_collect_parses_fenced_sources_and_skips_invalid():
    text = "Here you go:\n```json\n" + sources_json(
        [src("채널코퍼레이션", "CAT-A", "채널톡 AI 출시", "https://a.example/1")]
    )[:-2] + ', {"company": "X", "category": "CAT-A", "title": "bad", "url": "x.example"}]}\n```'
    oracle = FakeOracle(default=text)
    provider = GroundedSearchProvider(oracle)

    batch = provider.collect(make_config(), date(2025, 1, 13))

    assert [s.company for s in batch.sources] == ["채널코퍼레이션"]
    assert batch.meta.provider == "grounded_search"
    assert batch.meta.results == 1
    prompt, web_search = oracle.calls[0]
    assert web_search is True
    assert "Report date: 2025-01-13" in prompt
    assert "Week number: 3" in prompt


def test_collect_appends_retry_hint():
    oracle = FakeOracle(default='{"sources": []}')
    provider = GroundedSearchProvider(oracle)

    provider.collect(make_config(), date(2025, 1, 13), retry_hint="IMPORTANT RETRY (attempt 2)")

    assert oracle.calls[0][0].endswith("IMPORTANT RETRY (attempt 2)")


def test_unparsable_output_yields_no_sources():
    provider = GroundedSearchProvider(FakeOracle(default="sorry, I cannot help with that"))

    batch = provider.collect(make_config(), date(2025, 1, 13))

    assert batch.sources == []


def test_oracle_errors_propagate():
    provider = GroundedSearchProvider(FakeOracle(default=PermanentLLMError("boom")))

    with pytest.raises(PermanentLLMError):
        provider.collect(make_config(), date(2025, 1, 13))


def test_search_sources_uses_configured_categories():
    text = sources_json(
        [
            src("리턴제로", "CAT-A", "AI 상담 투자 유치", "https://b.example/2"),
            src("Other", "CAT-Z", "unknown", "https://b.example/3"),
        ]
    )
    provider = GroundedSearchProvider(FakeOracle(default=text), category_ids=["CAT-A", "CAT-B"])

    found = provider.search_sources("custom backfill prompt")

    assert [s.company for s in found] == ["리턴제로"]
