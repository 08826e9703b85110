import pytest

from llm.parsing import JsonParseError, normalize_root_json, parse_json_lenient


def test_strict_json_passes_through():
    assert parse_json_lenient('{"a": 1}') == {"a": 1}


def test_fenced_json_with_prose():
    text = 'Sure! Here is the result:\n```json\n{"sources": [{"company": "A"}]}\n```\nLet me know.'

    assert parse_json_lenient(text) == {"sources": [{"company": "A"}]}


def test_trailing_commentary_after_object():
    assert parse_json_lenient('{"a": [1, 2]} -- end of answer') == {"a": [1, 2]}


def test_truncated_json_is_repaired():
    parsed = parse_json_lenient('{"sources": [{"company": "A", "url": "https://a.example/1"}')

    assert parsed["sources"][0]["company"] == "A"


@pytest.mark.parametrize("text", ["", "   ", "no json here at all"])
def test_unrecoverable_text_raises(text):
    with pytest.raises(JsonParseError):
        parse_json_lenient(text)


def test_normalize_root_prefers_report_shaped_element():
    first = {"note": "preamble"}
    report = {"report_date": "2025-01-13", "category_updates": {}}

    assert normalize_root_json([first, report]) is report
    assert normalize_root_json([first]) is first
    assert normalize_root_json(report) is report
    assert normalize_root_json([]) is None
    assert normalize_root_json("text") is None
