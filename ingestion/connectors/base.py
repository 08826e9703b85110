"""Evidence provider abstraction and errors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Optional

from ingestion.models.domain import EvidenceBatch

if TYPE_CHECKING:  # pragma: no cover
    from ingestion.research_config import ResearchConfig


class ConnectorError(Exception):
    """Base connector error."""


class TransientError(ConnectorError):
    """Retryable error (e.g., rate limit, network hiccup)."""


class PermanentError(ConnectorError):
    """Non-retryable error (e.g., 4xx semantics)."""


class ConfigurationError(RuntimeError):
    """설정 누락/오류. 실행 시작 시점에 치명적으로 처리한다."""


class EvidenceProvider(ABC):
    """근거(출처 목록) 수집기 인터페이스."""

    name: str
    # 재시도 프롬프트를 활용할 수 있는 provider만 coverage 재시도 대상이다.
    supports_retry: bool = False
    max_items_per_company: Optional[int] = None

    @abstractmethod
    def collect(
        self,
        config: "ResearchConfig",
        report_date: date,
        *,
        retry_hint: Optional[str] = None,
    ) -> EvidenceBatch:
        """Return the sources found for the lookback window ending at ``report_date``."""

    def close(self) -> None:
        """Release HTTP clients the provider created itself."""
