"""Grounded oracle search connector (Provider A)."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence

from analysis.prompts.templates import build_sources_prompt
from ingestion.connectors.base import EvidenceProvider
from ingestion.models.domain import CollectionMeta, EvidenceBatch, SourceItem, parse_source_list
from ingestion.research_config import ResearchConfig
from ingestion.utils.logging import get_logger
from llm.client.openai_client import Oracle
from llm.parsing import JsonParseError, parse_json_lenient


class GroundedSearchProvider(EvidenceProvider):
    """웹 검색이 켜진 오라클 1회 호출로 출처 목록을 받는다."""

    name = "grounded_search"
    supports_retry = True

    def __init__(self, oracle: Oracle, *, category_ids: Optional[Sequence[str]] = None) -> None:
        self._oracle = oracle
        self._category_ids: List[str] = list(category_ids or [])
        self._logger = get_logger(__name__)

    def _parse(self, text: str, category_ids: Sequence[str]) -> List[SourceItem]:
        try:
            payload = parse_json_lenient(text)
        except JsonParseError as exc:
            self._logger.warning("grounded_search.unparsable", extra={"error": str(exc), "chars": len(text)})
            return []
        return parse_source_list(payload, category_ids)

    def search_sources(self, prompt: str) -> List[SourceItem]:
        """임의의 출처 수집 프롬프트(보강 검색용)를 실행한다."""
        response = self._oracle.generate(prompt, web_search=True)
        sources = self._parse(response.text, self._category_ids)
        self._logger.info("grounded_search.backfill", extra={"sources": len(sources)})
        return sources

    def collect(
        self,
        config: ResearchConfig,
        report_date: date,
        *,
        retry_hint: Optional[str] = None,
    ) -> EvidenceBatch:
        self._category_ids = config.category_ids
        week_number = report_date.isocalendar()[1]
        prompt = build_sources_prompt(config, report_date, week_number)
        if retry_hint:
            prompt = f"{prompt}\n{retry_hint}"

        response = self._oracle.generate(prompt, web_search=True)
        sources = self._parse(response.text, config.category_ids)
        self._logger.info(
            "grounded_search.collected",
            extra={"sources": len(sources), "grounded_urls": len(response.grounded_urls), "retry": bool(retry_hint)},
        )
        return EvidenceBatch(
            sources=sources,
            meta=CollectionMeta(
                provider=self.name,
                queries=[prompt],
                results=len(sources),
            ),
        )
