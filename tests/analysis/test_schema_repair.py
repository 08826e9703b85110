from __future__ import annotations

import json
from datetime import date

import pytest

from analysis.models.domain import CategoryUpdate, WeeklyReport
from analysis.services.schema_repair import (
    PLACEHOLDER_COMPANY,
    PLACEHOLDER_TAG,
    ReportRepairError,
    coerce_importance,
    enforce_allowed_urls,
    extract_urls,
    soften_report_payload,
    validate_or_repair,
    validate_report,
)
from llm.client.openai_client import TransientLLMError
from tests.fakes import FakeOracle

CATS = ["CAT-A", "CAT-B"]
DAY = date(2025, 1, 13)


def _valid_payload(**overrides):
    data = {
        "report_date": "2025-01-13",
        "week_number": 3,
        "top_highlights": [
            {"company": "A", "category": "CAT-A", "title": "t", "insight": "i", "importance_score": "4.6", "link": "https://a.example/1"},
            {"company": "Z", "category": "CAT-Z", "title": "t", "insight": "i", "importance_score": 5},
        ],
        "category_updates": {
            "CAT-A": [{"company": "A", "tag": "", "title": "t", "url": "https://a.example/1"}],
            "CAT-Z": [{"company": "Z", "tag": "x", "title": "t"}],
        },
        "action_items": ["a", "b", "c"],
    }
    data.update(overrides)
    return data


def test_coerce_importance():
    assert coerce_importance("4.6") == 5
    assert coerce_importance(0) == 1
    assert coerce_importance(9) == 5
    assert coerce_importance("high") == 3
    assert coerce_importance(True) == 3
    assert coerce_importance(float("inf")) == 3
    assert coerce_importance(float("nan")) == 3


def test_infinite_numbers_fall_back_to_defaults():
    highlight = {"company": "A", "category": "CAT-A", "title": "t", "insight": "i", "importance_score": float("inf")}
    text = json.dumps(_valid_payload(week_number=float("-inf"), top_highlights=[highlight]))
    assert "Infinity" in text
    oracle = FakeOracle()

    report = validate_or_repair(text, oracle, category_ids=CATS, report_date=DAY, week_number=3)

    assert report.week_number == 3
    assert report.top_highlights[0].importance_score == 3
    assert oracle.calls == []



def test_soften_fills_placeholders_and_drops_unknown_categories():
    softened = soften_report_payload(
        _valid_payload(week_number="abc", overseas_competitor_updates="none"),
        category_ids=CATS,
        report_date=DAY,
        week_number=3,
    )

    assert softened["week_number"] == 3
    assert [h["company"] for h in softened["top_highlights"]] == ["A"]
    assert softened["top_highlights"][0]["importance_score"] == 5
    assert set(softened["category_updates"]) == {"CAT-A"}
    assert softened["category_updates"]["CAT-A"][0]["tag"] == PLACEHOLDER_TAG
    assert "overseas_competitor_updates" not in softened


def test_validate_report_conforms_category_keys():
    report = validate_report(json.dumps(_valid_payload()), category_ids=CATS, report_date=DAY, week_number=3)

    assert list(report.category_updates) == CATS
    assert report.category_updates["CAT-B"] == []


def test_validate_report_selects_report_from_array_root():
    text = json.dumps([{"note": "x"}, _valid_payload(report_date="bad-date")])

    report = validate_report(text, category_ids=CATS, report_date=DAY, week_number=3)

    assert report.report_date == "2025-01-13"


def test_missing_company_gets_placeholder():
    payload = _valid_payload(category_updates={"CAT-A": [{"title": "t", "tag": "x"}]})

    report = validate_report(json.dumps(payload), category_ids=CATS, report_date=DAY, week_number=3)

    assert report.category_updates["CAT-A"][0].company == PLACEHOLDER_COMPANY


def test_extract_urls_trims_punctuation():
    text = 'see https://a.example/1, and (https://b.example/2). also "https://a.example/1"'

    assert extract_urls(text) == ["https://a.example/1", "https://b.example/2"]


def test_enforce_allowed_urls_drops_items_with_unlisted_links():
    report = WeeklyReport(
        report_date="2025-01-13",
        week_number=3,
        category_updates={
            "CAT-A": [
                CategoryUpdate(company="A", tag="x", title="t", url="https://A.example/1/?utm_source=n"),
                CategoryUpdate(company="B", tag="x", title="t", url="https://made-up.example/story"),
                CategoryUpdate(company="C", tag="x", title="t"),
            ]
        },
    )

    out = enforce_allowed_urls(report, ["https://a.example/1"])

    assert [u.company for u in out.category_updates["CAT-A"]] == ["A", "C"]
    assert out.category_updates["CAT-A"][0].url == "https://A.example/1/?utm_source=n"
    assert report.category_updates["CAT-A"][1].url == "https://made-up.example/story"


def test_validate_or_repair_returns_valid_without_oracle_call():
    oracle = FakeOracle()

    report = validate_or_repair(json.dumps(_valid_payload()), oracle, category_ids=CATS, report_date=DAY, week_number=3)

    assert report.category_updates["CAT-A"][0].company == "A"
    assert oracle.calls == []


def test_repair_keeps_only_urls_from_original_output():
    bad = "Report: company A launched https://a.example/1 (not json)"
    repaired = _valid_payload(
        category_updates={
            "CAT-A": [
                {"company": "A", "tag": "출시", "title": "t", "url": "https://a.example/1"},
                {"company": "B", "tag": "출시", "title": "t", "url": "https://invented.example/x"},
            ]
        }
    )
    oracle = FakeOracle(default=json.dumps(repaired))

    report = validate_or_repair(bad, oracle, category_ids=CATS, report_date=DAY, week_number=3)

    assert len(oracle.calls) == 1
    assert "Reformat the following text" in oracle.calls[0][0]
    assert oracle.calls[0][1] is False
    assert [u.company for u in report.category_updates["CAT-A"]] == ["A"]


def test_repair_failure_is_fatal():
    oracle = FakeOracle(default="still not json")

    with pytest.raises(ReportRepairError):
        validate_or_repair("nope", oracle, category_ids=CATS, report_date=DAY, week_number=3)


def test_repair_call_error_is_fatal():
    oracle = FakeOracle(default=TransientLLMError("timeout"))

    with pytest.raises(ReportRepairError):
        validate_or_repair("nope", oracle, category_ids=CATS, report_date=DAY, week_number=3)
