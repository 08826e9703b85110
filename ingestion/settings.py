"""Environment settings for the weekly radar run."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import (
    Field,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

EvidenceProviderName = Literal["grounded_search", "news_search"]
LedgerBackend = Literal["file", "redis"]


class Settings(BaseSettings):
    """실행 환경 설정 (.env 지원)."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    evidence_provider: EvidenceProviderName = Field(
        "grounded_search",
        alias="EVIDENCE_PROVIDER",
        description="근거 수집 provider (grounded_search | news_search).",
    )
    searchapi_api_key: Optional[SecretStr] = Field(None, alias="SEARCHAPI_API_KEY", description="SearchAPI 인증 키.")
    searchapi_base_url: str = Field(
        "https://www.searchapi.io/api/v1/search",
        alias="SEARCHAPI_BASE_URL",
        description="SearchAPI 엔드포인트",
    )
    searchapi_timeout_seconds: PositiveInt = Field(25, alias="SEARCHAPI_TIMEOUT_SECONDS", description="SearchAPI 타임아웃(초)")
    research_config_path: str = Field(
        "config/research.json",
        alias="RESEARCH_CONFIG_PATH",
        description="리서치 설정 JSON 경로.",
    )
    output_dir: str = Field("out", alias="OUTPUT_DIR", description="report.json/outbox 출력 디렉터리.")
    report_timezone: str = Field("Asia/Seoul", alias="TZ", description="리포트 날짜 계산 기준 타임존.")
    seen_history_backend: LedgerBackend = Field("file", alias="SEEN_HISTORY_BACKEND", description="발송 이력 저장소.")
    seen_history_path: str = Field(
        "state/seen_history.json",
        alias="SEEN_HISTORY_PATH",
        description="발송 이력 파일 경로 또는 Redis 키.",
    )
    seen_history_redis_url: Optional[str] = Field(None, alias="SEEN_HISTORY_REDIS_URL", description="Redis 이력 저장소 DSN.")
    seen_history_keep_weeks: PositiveInt = Field(8, alias="SEEN_HISTORY_KEEP_WEEKS", description="이력 보관 주 수.")
    structlog_level: str = Field("INFO", alias="LOG_LEVEL", description="로그 레벨.")
    log_json: bool = Field(False, alias="LOG_JSON", description="로그를 JSON 형식으로 출력할지 여부.")
    celery_broker_url: str = Field("redis://localhost:6379/0", alias="CELERY_BROKER_URL", description="Celery 브로커 DSN.")
    weekly_run_day_of_week: str = Field("mon", alias="WEEKLY_RUN_DAY_OF_WEEK", description="주간 실행 요일 (crontab).")
    weekly_run_hour: int = Field(8, ge=0, le=23, alias="WEEKLY_RUN_HOUR", description="주간 실행 시각 (시).")
    celery_task_soft_time_limit: PositiveInt = Field(
        1800,
        alias="CELERY_TASK_SOFT_TIME_LIMIT",
        description="Celery 태스크 소프트 타임아웃 (초).",
    )

    @field_validator("research_config_path", "seen_history_path", "output_dir")
    @classmethod
    def _non_blank_path(cls, value: str) -> str:
        path = value.strip()
        if not path:
            raise ValueError("경로 설정은 공백일 수 없습니다.")
        return path

    @field_validator("seen_history_redis_url")
    @classmethod
    def _validate_redis_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if "://" not in value:
            raise ValueError("SEEN_HISTORY_REDIS_URL은 유효한 DSN 문자열이어야 합니다.")
        return value.strip()


@lru_cache()
def get_settings() -> Settings:
    """환경 변수를 기준으로 Settings 인스턴스를 반환한다."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"환경 변수 검증에 실패했습니다: {exc}") from exc


def reset_settings_cache() -> None:
    """Settings LRU 캐시를 초기화한다 (테스트 용도)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
