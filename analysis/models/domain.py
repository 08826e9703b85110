"""DTO/스키마: 주간 리포트 정의.

Pydantic v2 기반 스키마로 오라클 출력을 정규화한다. 배열 필드는 null 대신
항상 빈 배열을 기본값으로 가진다.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ingestion.services.url_normalizer import clean_http_url


def _optional_url(value: Any) -> Optional[str]:
    return clean_http_url(value)


def _strip_nonempty(value: Any) -> Any:
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("필드는 공백일 수 없습니다.")
        return s
    return value


class Highlight(BaseModel):
    company: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    insight: str = Field(..., min_length=1)
    importance_score: int = Field(..., ge=1, le=5)
    link: Optional[str] = None

    @field_validator("company", "category", "title", "insight", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return _strip_nonempty(v)

    @field_validator("link", mode="before")
    @classmethod
    def _link(cls, v: Any) -> Optional[str]:
        return _optional_url(v)


class CategoryUpdate(BaseModel):
    company: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    url: Optional[str] = None
    insight: Optional[str] = None

    @field_validator("company", "tag", "title", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return _strip_nonempty(v)

    @field_validator("url", mode="before")
    @classmethod
    def _url(cls, v: Any) -> Optional[str]:
        return _optional_url(v)

    @field_validator("insight", mode="before")
    @classmethod
    def _optional_insight(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        return v.strip() or None


class OverseasUpdate(CategoryUpdate):
    """해외 경쟁사 동향 (본사 소재 국가와 원래 카테고리 보존)."""

    country: Optional[str] = None
    category: Optional[str] = None


class HiringSignal(BaseModel):
    company: str = Field(..., min_length=1)
    position: str = Field(..., min_length=1)
    strategic_inference: str = Field(..., min_length=1)
    url: Optional[str] = None

    @field_validator("company", "position", "strategic_inference", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return _strip_nonempty(v)

    @field_validator("url", mode="before")
    @classmethod
    def _url(cls, v: Any) -> Optional[str]:
        return _optional_url(v)


def collapse_action_item(value: Any) -> Any:
    """객체 형태의 액션 아이템을 ``"team: text"`` 문자열로 접는다."""
    if isinstance(value, str) or not isinstance(value, dict):
        return value
    text = next((value[k] for k in ("text", "item", "action", "title") if isinstance(value.get(k), str) and value[k]), None)
    team = next((value[k] for k in ("team", "owner", "department") if isinstance(value.get(k), str) and value[k]), None)
    if team and text:
        return f"{team}: {text}"
    if text:
        return text
    return json.dumps(value, ensure_ascii=False)


class WeeklyReport(BaseModel):
    """주간 경쟁사 동향 리포트."""

    report_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    week_number: int = Field(..., ge=1, le=53)
    company_homepages: Dict[str, str] = Field(default_factory=dict)
    top_highlights: List[Highlight] = Field(default_factory=list)
    category_updates: Dict[str, List[CategoryUpdate]] = Field(default_factory=dict)
    overseas_competitor_updates: List[OverseasUpdate] = Field(default_factory=list)
    hiring_signals: List[HiringSignal] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)

    @field_validator("company_homepages", mode="before")
    @classmethod
    def _valid_homepages(cls, v: Any) -> Dict[str, str]:
        if not isinstance(v, dict):
            return {}
        out: Dict[str, str] = {}
        for company, url in v.items():
            cleaned = clean_http_url(url)
            if isinstance(company, str) and company.strip() and cleaned:
                out[company.strip()] = cleaned
        return out

    @field_validator("action_items", mode="before")
    @classmethod
    def _collapse_action_items(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        items = [collapse_action_item(x) for x in v]
        return [x.strip() for x in items if isinstance(x, str) and x.strip()]

    def all_urls(self) -> List[str]:
        """리포트에 포함된 모든 링크 (중복 제거, 등장 순서 유지)."""
        urls: List[str] = []
        for h in self.top_highlights:
            if h.link:
                urls.append(h.link)
        for items in self.category_updates.values():
            urls.extend(u.url for u in items if u.url)
        urls.extend(u.url for u in self.overseas_competitor_updates if u.url)
        urls.extend(s.url for s in self.hiring_signals if s.url)
        return list(dict.fromkeys(urls))

    def total_updates(self) -> int:
        return sum(len(items) for items in self.category_updates.values())
