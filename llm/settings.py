"""Settings for the grounded oracle (OpenAI Responses API)."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, NonNegativeFloat, PositiveFloat, PositiveInt, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OracleSettings(BaseSettings):
    """Environment-driven configuration for oracle calls."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    openai_api_key: str = Field(..., alias="OPENAI_API_KEY", description="OpenAI API key")
    oracle_model: str = Field("gpt-4.1", alias="ORACLE_MODEL", description="OpenAI model name")
    oracle_max_output_tokens: PositiveInt = Field(
        8192, alias="ORACLE_MAX_OUTPUT_TOKENS", description="Max output tokens"
    )
    oracle_temperature: NonNegativeFloat = Field(0.2, alias="ORACLE_TEMPERATURE", description="Sampling temperature")
    oracle_cost_limit_usd: PositiveFloat = Field(0.5, alias="ORACLE_COST_LIMIT_USD", description="Per-request cost cap (USD)")
    oracle_request_timeout_seconds: PositiveInt = Field(
        180,
        alias="ORACLE_REQUEST_TIMEOUT_SECONDS",
        description="HTTP request timeout in seconds",
    )
    oracle_retry_max_attempts: PositiveInt = Field(2, alias="ORACLE_RETRY_MAX_ATTEMPTS", description="Max retry attempts")
    require_grounding: bool = Field(
        False,
        alias="REQUIRE_GROUNDING",
        description="웹 검색 응답에 인용 URL이 하나도 없으면 실패로 처리",
    )

    @field_validator("openai_api_key")
    @classmethod
    def _non_empty_api_key(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("OPENAI_API_KEY는 공백일 수 없습니다.")
        return s


@lru_cache()
def get_oracle_settings() -> OracleSettings:
    try:
        return OracleSettings()
    except ValidationError as exc:
        raise RuntimeError(f"오라클 설정 검증 실패: {exc}") from exc


def reset_oracle_settings_cache() -> None:
    get_oracle_settings.cache_clear()  # type: ignore[attr-defined]
