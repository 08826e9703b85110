import pytest

from ingestion.services.company_names import (
    company_match_key,
    has_hangul,
    is_domestic_country,
    is_known_foreign,
    normalize_company_key,
    resolve_country,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("토스 (비바리퍼블리카)", "토스"),
        ("Acme — US", "Acme"),
        ("Acme - Series B", "Acme"),
        ("  Big   Corp  ", "Big Corp"),
        ("(미상)", "(미상)"),
    ],
)
def test_normalize_company_key(raw, expected):
    assert normalize_company_key(raw) == expected


def test_match_key_is_case_insensitive():
    assert company_match_key("ACME (US)") == company_match_key("acme")


def test_domestic_labels():
    for label in ("Korea", "south korea", "Republic of Korea", " KR "):
        assert is_domestic_country(label)
    assert not is_domestic_country("USA")


def test_resolve_country_falls_back_to_normalized_key():
    hq = {"Acme": "USA", "토스": "South Korea"}

    assert resolve_country("Acme (Delaware)", hq) == "USA"
    assert resolve_country("토스", hq) == "South Korea"
    assert resolve_country("Unknown", hq) is None
    assert is_known_foreign("Acme", hq)
    assert not is_known_foreign("토스", hq)
    assert not is_known_foreign("Unknown", hq)


def test_has_hangul():
    assert has_hangul("채널톡")
    assert not has_hangul("Channel Talk")
