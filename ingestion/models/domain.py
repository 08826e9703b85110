"""Domain DTOs for the evidence collection stage."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ingestion.services.url_normalizer import clean_http_url, normalize_url

QUOTE_MIN_CHARS = 20
QUOTE_MAX_CHARS = 400


class SourceItem(BaseModel):
    """근거 출처 1건. url은 항상 절대 http(s) URL이다."""

    company: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, description="설정된 카테고리 ID 중 하나")
    title: str = Field(..., min_length=1)
    url: str
    published_date: Optional[str] = None
    quote: Optional[str] = Field(None, description="원문 인용 (20~400자)")
    note: Optional[str] = Field(None, description="인사이트로 쓰일 요약 메모")

    @field_validator("company", "category", "title", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("url", mode="before")
    @classmethod
    def _http_url(cls, v: Any) -> str:
        cleaned = clean_http_url(v)
        if cleaned is None:
            raise ValueError(f"절대 http(s) URL이 아닙니다: {v!r}")
        return cleaned

    @field_validator("quote", mode="before")
    @classmethod
    def _bounded_quote(cls, v: Any) -> Optional[str]:
        # 길이 범위를 벗어난 인용은 항목이 아니라 인용만 버린다.
        if not isinstance(v, str):
            return None
        s = v.strip()
        if QUOTE_MIN_CHARS <= len(s) <= QUOTE_MAX_CHARS:
            return s
        return None

    @field_validator("published_date", "note", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        s = v.strip()
        return s or None


class CollectionMeta(BaseModel):
    provider: str
    queries: List[str] = Field(default_factory=list)
    results: int = 0


class EvidenceBatch(BaseModel):
    sources: List[SourceItem] = Field(default_factory=list)
    meta: CollectionMeta


def parse_source_list(payload: Any, category_ids: Iterable[str]) -> List[SourceItem]:
    """Parse ``{"sources": [...]}``; invalid entries are skipped silently."""
    if not isinstance(payload, dict):
        return []
    raw = payload.get("sources")
    if not isinstance(raw, list):
        return []
    allowed = set(category_ids)
    items: List[SourceItem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            item = SourceItem.model_validate(entry)
        except ValidationError:
            continue
        if item.category not in allowed:
            continue
        items.append(item)
    return items


def merge_sources(*batches: Iterable[SourceItem]) -> List[SourceItem]:
    """Concatenate source lists, keeping the first occurrence per normalized URL."""
    seen: set[str] = set()
    merged: List[SourceItem] = []
    for batch in batches:
        for item in batch:
            key = normalize_url(item.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return merged
