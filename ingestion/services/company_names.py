"""Company name helpers shared by collection and report post-processing."""

from __future__ import annotations

import re
from typing import Mapping, Optional

_HANGUL_RE = re.compile(r"[\uac00-\ud7af]")
_LATIN_RE = re.compile(r"[A-Za-z]")
_PAREN_RE = re.compile(r"\s*\([^)]*\)\s*")
_WS_RE = re.compile(r"\s+")

DOMESTIC_COUNTRY_LABELS = frozenset({"korea", "south korea", "republic of korea", "kr"})


def has_hangul(text: str) -> bool:
    return bool(_HANGUL_RE.search(text or ""))


def has_latin(text: str) -> bool:
    return bool(_LATIN_RE.search(text or ""))


def normalize_company_key(company: str) -> str:
    """괄호 설명과 대시 뒤 부연을 제거한 회사명 키.

    >>> normalize_company_key("토스 (비바리퍼블리카)")
    '토스'
    >>> normalize_company_key("Acme — US")
    'Acme'
    """
    original = (company or "").strip()
    s = _PAREN_RE.sub(" ", original).strip()
    s = s.split("—")[0].split("-")[0].strip()
    return _WS_RE.sub(" ", s) or original


def company_match_key(company: str) -> str:
    """대소문자 무시 비교용 키."""
    return normalize_company_key(company).lower()


def is_domestic_country(country: str) -> bool:
    return (country or "").strip().lower() in DOMESTIC_COUNTRY_LABELS


def resolve_country(company: str, company_hq: Mapping[str, str]) -> Optional[str]:
    """원래 이름, 정규화 키 순서로 HQ 국가를 찾는다. 모르면 ``None``."""
    for candidate in (company, (company or "").strip(), normalize_company_key(company)):
        value = company_hq.get(candidate)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def is_known_foreign(company: str, company_hq: Mapping[str, str]) -> bool:
    country = resolve_country(company, company_hq)
    return country is not None and not is_domestic_country(country)
