"""Research configuration (categories, watchlist, coverage thresholds).

JSON 파일로 관리하며 pydantic 모델로 검증한다. 검증 실패는 실행 시작 시점의
치명적 오류(ConfigurationError)로 취급한다.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ingestion.connectors.base import ConfigurationError


class Category(BaseModel):
    id: str = Field(..., pattern=r"^[A-Za-z0-9_-]+$", description="카테고리 식별자 (예: CAT-A).")
    name: str = Field(..., min_length=1)
    emoji: Optional[str] = None
    description: Optional[str] = None


class WatchlistEntry(BaseModel):
    company: str = Field(..., min_length=1)
    category_id: str
    keywords: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)

    @field_validator("company")
    @classmethod
    def _strip_company(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("company는 공백일 수 없습니다.")
        return s

    @field_validator("keywords", "aliases")
    @classmethod
    def _clean_terms(cls, v: List[str]) -> List[str]:
        return [t.strip() for t in v if t and t.strip()]


class SearchApiOptions(BaseModel):
    """Provider B (news search API) 옵션."""

    include_kr: bool = True
    include_global: bool = True
    kr_gl: str = "kr"
    kr_hl: str = "ko"
    global_gl: str = "us"
    global_hl: str = "en"
    max_results_per_query: int = Field(10, ge=1, le=100)
    max_pages_per_query: int = Field(3, ge=1, le=10)
    global_watchlist_max_results_per_query: int = Field(20, ge=1, le=100)
    global_watchlist_max_pages_per_query: int = Field(2, ge=1, le=10)
    concurrency: int = Field(4, ge=1, le=32)
    require_company_mention: bool = True
    include_category_queries: bool = False
    max_items_per_company: int = Field(2, ge=1, le=10)
    discovery_enabled: bool = True
    max_new_companies_total: int = Field(12, ge=0, le=100)
    max_new_companies_per_category: int = Field(4, ge=0, le=20)


class EmailOptions(BaseModel):
    subject_prefix: Optional[str] = None


class ResearchConfig(BaseModel):
    timezone: Optional[str] = None
    report_name: str = "Market Radar"
    lookback_days: int = Field(7, ge=1, le=30)
    watchlist_only: bool = False
    min_companies_per_category: int = Field(3, ge=1, le=20)
    max_companies_per_category: int = Field(6, ge=1, le=50)
    min_source_urls: int = Field(5, ge=0, le=100)
    prefer_startups: bool = True
    min_startups_per_category: int = Field(2, ge=0, le=20)
    max_enterprises_per_category: int = Field(1, ge=0, le=20)
    excluded_companies: List[str] = Field(default_factory=list)
    categories: List[Category] = Field(..., min_length=1)
    watchlist: List[WatchlistEntry] = Field(..., min_length=1)
    global_watchlist: List[WatchlistEntry] = Field(default_factory=list)
    max_source_attempts: int = Field(3, ge=1, le=5)
    min_overseas_items: int = Field(10, ge=0, le=50)
    max_overseas_items: int = Field(15, ge=1, le=50)
    verify_source_urls: bool = True
    url_check_timeout_ms: int = Field(8000, ge=500, le=60_000)
    url_check_concurrency: int = Field(6, ge=1, le=32)
    soft_404_detection: bool = True
    homepage_fallback_detection: bool = True
    drop_items_without_valid_url: bool = True
    searchapi: SearchApiOptions = Field(default_factory=SearchApiOptions)
    email: Optional[EmailOptions] = None

    @model_validator(mode="after")
    def _check_references(self) -> "ResearchConfig":
        ids = [c.id for c in self.categories]
        if len(set(ids)) != len(ids):
            raise ValueError(f"중복된 카테고리 ID가 존재합니다: {ids}")
        known = set(ids)
        for entry in [*self.watchlist, *self.global_watchlist]:
            if entry.category_id not in known:
                raise ValueError(f"알 수 없는 category_id: {entry.company}/{entry.category_id}")
        if self.max_overseas_items < self.min_overseas_items:
            raise ValueError("max_overseas_items는 min_overseas_items 이상이어야 합니다.")
        return self

    @property
    def category_ids(self) -> List[str]:
        return [c.id for c in self.categories]

    @property
    def max_companies_cap(self) -> int:
        return max(self.min_companies_per_category, self.max_companies_per_category)

    @property
    def subject_prefix(self) -> str:
        if self.email is not None and self.email.subject_prefix:
            return self.email.subject_prefix
        return f"[{self.report_name}]"


def load_research_config(path: str | Path) -> ResearchConfig:
    """Read and validate the research config JSON at ``path``."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"리서치 설정 파일을 읽을 수 없습니다: {path}") from exc
    try:
        return ResearchConfig.model_validate(json.loads(raw))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"리서치 설정이 올바른 JSON이 아닙니다: {path}") from exc
    except ValidationError as exc:
        raise ConfigurationError(f"리서치 설정 검증 실패: {exc}") from exc
