"""OpenAI 오라클 클라이언트 래퍼.

특징
- Responses API + web_search 도구로 근거 기반(grounded) 응답 생성
- 응답 텍스트와 인용(url_citation) URL 목록을 함께 반환
- 재시도/타임아웃/비용 상한(요청당) 적용
- Provider 주입으로 테스트 시 네트워크/실제 의존성 제거
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from ingestion.utils.logging import get_logger
from llm.settings import OracleSettings, get_oracle_settings


class LLMError(Exception):
    """LLM 호출 관련 기본 오류."""


class TransientLLMError(LLMError):
    """일시 오류(재시도 대상)."""


class PermanentLLMError(LLMError):
    """영구 오류(재시도 불가)."""


ProviderFn = Callable[[Dict[str, Any]], Dict[str, Any]]


_PRICE_PER_1K_TOKENS_USD: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4o": {"prompt": 0.0025, "completion": 0.0100},
    "gpt-4.1": {"prompt": 0.0020, "completion": 0.0080},
    "gpt-4.1-mini": {"prompt": 0.0004, "completion": 0.0016},
}


def _estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    price = _PRICE_PER_1K_TOKENS_USD.get(model, _PRICE_PER_1K_TOKENS_USD["gpt-4.1"])
    return (
        (prompt_tokens / 1000.0) * price["prompt"]
        + (completion_tokens / 1000.0) * price["completion"]
    )


@dataclass(frozen=True)
class OracleResponse:
    text: str
    model: str
    grounded_urls: List[str] = field(default_factory=list)


class Oracle(Protocol):
    """프롬프트 → 텍스트(+인용 URL) 호출 계약. 테스트에서는 가짜 구현을 주입한다."""

    def generate(self, prompt: str, *, web_search: bool = False) -> OracleResponse:
        ...


def _extract_citations(resp: Any) -> List[str]:
    """Responses API 출력에서 url_citation 주석의 URL을 순서대로 모은다."""
    urls: List[str] = []
    for item in getattr(resp, "output", None) or []:
        for content in getattr(item, "content", None) or []:
            for annotation in getattr(content, "annotations", None) or []:
                if getattr(annotation, "type", None) == "url_citation":
                    url = getattr(annotation, "url", None)
                    if url and url not in urls:
                        urls.append(url)
    return urls


@dataclass(frozen=True)
class OracleClient:
    settings: OracleSettings
    provider: Optional[ProviderFn] = None

    @classmethod
    def from_env(cls, provider: Optional[ProviderFn] = None) -> "OracleClient":
        return cls(get_oracle_settings(), provider=provider)

    def _get_provider(self) -> ProviderFn:
        if self.provider is not None:
            return self.provider
        # 지연 import: 라이브러리가 없으면 명확한 에러
        try:
            import openai  # type: ignore
        except ImportError as exc:  # pragma: no cover - 테스트에선 provider 주입
            raise PermanentLLMError("openai 라이브러리를 찾을 수 없습니다.") from exc

        client = openai.OpenAI(
            api_key=self.settings.openai_api_key,
            timeout=float(self.settings.oracle_request_timeout_seconds),
            max_retries=0,
        )
        transient = (
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        )

        def _call(payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - 네트워크 미사용
            try:
                resp = client.responses.create(**payload)
            except transient as exc:
                raise TransientLLMError(f"오라클 일시 오류: {exc}") from exc
            except openai.APIError as exc:
                raise PermanentLLMError(f"오라클 호출 실패: {exc}") from exc
            usage = getattr(resp, "usage", None)
            return {
                "output_text": resp.output_text,
                "citations": _extract_citations(resp),
                "usage": {
                    "input_tokens": getattr(usage, "input_tokens", 0),
                    "output_tokens": getattr(usage, "output_tokens", 0),
                },
                "model": resp.model,
            }

        return _call

    def _build_payload(self, prompt: str, web_search: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.settings.oracle_model,
            "input": prompt,
            "temperature": float(self.settings.oracle_temperature),
            "max_output_tokens": int(self.settings.oracle_max_output_tokens),
        }
        if web_search:
            payload["tools"] = [{"type": "web_search"}]
        return payload

    def generate(self, prompt: str, *, web_search: bool = False) -> OracleResponse:
        """Run one oracle call; ``web_search`` enables grounding with cited URLs."""
        payload = self._build_payload(prompt, web_search)
        provider = self._get_provider()
        logger = get_logger(__name__)

        attempts = 0
        last_exc: Optional[Exception] = None
        start = time.monotonic()
        while attempts <= int(self.settings.oracle_retry_max_attempts):
            attempts += 1
            try:
                resp = provider(payload)
                model = resp.get("model") or self.settings.oracle_model
                usage = resp.get("usage") or {}
                prompt_tokens = int(usage.get("input_tokens", 0))
                completion_tokens = int(usage.get("output_tokens", 0))
                cost = _estimate_cost_usd(model, prompt_tokens, completion_tokens)
                if cost > float(self.settings.oracle_cost_limit_usd):
                    raise PermanentLLMError("LLM 비용 상한 초과")

                text = str(resp.get("output_text") or "")
                if not text.strip():
                    raise TransientLLMError("오라클 응답이 비어 있습니다.")
                citations = [str(u) for u in resp.get("citations") or [] if u]
                if web_search and self.settings.require_grounding and not citations:
                    raise TransientLLMError("웹 검색 근거(인용 URL)가 없는 응답입니다.")

                logger.info(
                    "oracle.response",
                    extra={
                        "model": model,
                        "web_search": web_search,
                        "citations": len(citations),
                        "prompt_tokens": prompt_tokens,
                        "completion_tokens": completion_tokens,
                        "attempt": attempts,
                    },
                )
                return OracleResponse(text=text, model=model, grounded_urls=citations)
            except TransientLLMError as exc:
                last_exc = exc
                if time.monotonic() - start > float(self.settings.oracle_request_timeout_seconds):
                    # 타임아웃은 재시도 대신 종료
                    raise TransientLLMError("LLM 요청 타임아웃 초과") from exc
                logger.warning("oracle.retry", extra={"attempt": attempts, "error": str(exc)})

        assert last_exc is not None
        raise TransientLLMError(f"LLM 호출 재시도 한도 초과: {last_exc}")
