"""News search API connector (SearchAPI ``google_news`` engine).

- 워치리스트 회사 × 로케일(KR/GLOBAL)별 질의, 선택적으로 글로벌 워치리스트/카테고리 질의
- 페이지네이션, 정규화 URL 기준 중복 제거, 소셜/구글 래퍼 도메인 제외
- 주 질의 결과가 적으면 회사명 단독 질의로 보충
- 국내 회사가 부족한 카테고리는 오라클로 신규 회사를 발굴해 추가 질의
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from analysis.prompts.templates import build_company_discovery_prompt
from ingestion.connectors.base import (
    ConfigurationError,
    ConnectorError,
    EvidenceProvider,
    PermanentError,
    TransientError,
)
from ingestion.models.domain import CollectionMeta, EvidenceBatch, SourceItem
from ingestion.research_config import ResearchConfig, WatchlistEntry
from ingestion.services.company_names import company_match_key, has_hangul, has_latin
from ingestion.services.url_normalizer import clean_http_url, normalize_url
from ingestion.settings import Settings
from ingestion.utils.logging import get_logger
from llm.client.openai_client import LLMError, Oracle
from llm.parsing import JsonParseError, parse_json_lenient

KR_TERMS = ("출시", "론칭", "런칭", "업데이트", "기능", "발표", "제휴", "파트너십", "투자", "채용")
GLOBAL_TERMS = ("launch", "release", "releases", "update", "announces", "introduces", "partnership", "funding", "hiring")
MAX_QUERY_TERMS = 12

BAD_HOSTS = frozenset(
    host
    for base in (
        "instagram.com",
        "facebook.com",
        "tiktok.com",
        "youtube.com",
        "x.com",
        "twitter.com",
        "linkedin.com",
        "pinterest.com",
        "reddit.com",
        "engine.roa.ai",
    )
    for host in (base, f"www.{base}")
)
RESULT_LIST_KEYS = ("news_results", "top_stories", "organic_results", "results", "items", "data")
URL_KEYS = ("news_url", "source_url", "url", "link")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class SearchLocale:
    label: str
    gl: str
    hl: str
    extra_terms: Tuple[str, ...]


@dataclass(frozen=True)
class SearchTask:
    company: str
    query_company: str
    company_terms: Tuple[str, ...]
    category: str
    query: str
    locale: SearchLocale
    max_results: int
    max_pages: int


@dataclass
class NewsHit:
    title: str
    url: str
    published_date: Optional[str] = None
    snippet: Optional[str] = None


def should_use_company_term(term: str) -> bool:
    """회사명 언급 검사에 쓸 만큼 구별력 있는 용어인지."""
    t = term.strip()
    if not t:
        return False
    if has_hangul(t):
        return True
    if has_latin(t):
        letters = [ch for ch in t if ch.isascii() and ch.isalpha()]
        return len(letters) >= 5 or "." in t or " " in t
    return len(t) >= 6


def pick_domain_alias(aliases: Sequence[str]) -> Optional[str]:
    for alias in aliases:
        t = alias.strip()
        if t and should_use_company_term(t) and "." in t:
            return t
    return None


def build_query(company: str, keywords: Sequence[str], locale: SearchLocale) -> str:
    terms = list(dict.fromkeys(t.strip() for t in [*keywords, *locale.extra_terms] if t and t.strip()))
    terms = terms[:MAX_QUERY_TERMS]
    parts = [f'"{company}"']
    if terms:
        parts.append("(" + " OR ".join(f'"{t}"' for t in terms) + ")")
    return " ".join(parts)


def fallback_threshold(max_results: int) -> int:
    return min(10, max(3, max_results // 10))


def should_exclude_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return True
    host = (parts.hostname or "").lower()
    path = parts.path.lower()
    if host in BAD_HOSTS:
        return True
    if host.endswith("google.com") or host.endswith("googleusercontent.com"):
        return True
    if path.endswith("/error") or "/error.html" in path:
        return True
    if "image_popup" in path or "/popular/" in parts.path:
        return True
    return False


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def coerce_news_results(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return []
    for key in RESULT_LIST_KEYS:
        value = raw.get(key)
        if isinstance(value, list):
            return [x for x in value if isinstance(x, dict)]
    return []


def pick_url(item: Dict[str, Any]) -> Optional[str]:
    """게시처 URL을 구글/애그리게이터 래퍼 URL보다 우선한다."""
    containers = [item]
    if isinstance(item.get("story"), dict):
        containers.append(item["story"])
    for container in containers:
        for key in URL_KEYS:
            url = clean_http_url(container.get(key))
            if url:
                return url
    return None


def mentions_company(terms: Sequence[str], title: str, snippet: Optional[str]) -> bool:
    hay = f"{title} {snippet or ''}".lower()
    return any(t.strip().lower() in hay for t in terms if t.strip())


def run_bounded(items: Sequence[T], concurrency: int, fn: Callable[[T], R]) -> List[R]:
    """고정 크기 워커 풀. 워커는 공유 인덱스를 잠금 하에 하나씩 가져간다."""
    results: List[Optional[R]] = [None] * len(items)
    lock = threading.Lock()
    cursor = {"next": 0}

    def _worker() -> None:
        while True:
            with lock:
                index = cursor["next"]
                cursor["next"] += 1
            if index >= len(items):
                return
            results[index] = fn(items[index])

    workers = max(1, min(int(concurrency), len(items) or 1))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="news-search") as pool:
        for future in [pool.submit(_worker) for _ in range(workers)]:
            future.result()
    return results  # type: ignore[return-value]


def _window(config: ResearchConfig, report_date: date) -> Tuple[str, str]:
    start = report_date - timedelta(days=max(0, config.lookback_days - 1))
    return start.strftime("%m/%d/%Y"), report_date.strftime("%m/%d/%Y")


class NewsSearchProvider(EvidenceProvider):
    """Provider B: 뉴스 검색 API 기반 근거 수집."""

    name = "news_search"
    supports_retry = False

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://www.searchapi.io/api/v1/search",
        timeout_seconds: float = 25.0,
        client: Optional[httpx.Client] = None,
        oracle: Optional[Oracle] = None,
        max_items_per_company: int = 2,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ConfigurationError("SEARCHAPI_API_KEY가 설정되지 않았습니다.")
        self._api_key = api_key.strip()
        self._base_url = base_url
        self._timeout = float(timeout_seconds)
        self._client = client or httpx.Client(timeout=self._timeout)
        self._owns_client = client is None
        self._oracle = oracle
        self.max_items_per_company = max_items_per_company
        self._logger = get_logger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        config: ResearchConfig,
        *,
        oracle: Optional[Oracle] = None,
        client: Optional[httpx.Client] = None,
    ) -> "NewsSearchProvider":
        key = settings.searchapi_api_key.get_secret_value() if settings.searchapi_api_key else None
        return cls(
            key,
            base_url=settings.searchapi_base_url,
            timeout_seconds=float(settings.searchapi_timeout_seconds),
            client=client,
            oracle=oracle,
            max_items_per_company=config.searchapi.max_items_per_company,
        )

    # -- HTTP -----------------------------------------------------------------

    def _fetch_page(self, query: str, locale: SearchLocale, page: int, start: str, end: str) -> Any:
        params = {
            "engine": "google_news",
            "q": query,
            "gl": locale.gl,
            "hl": locale.hl,
            "api_key": self._api_key,
            "sort_by": "most_recent",
            "page": page,
            "time_period_min": start,
            "time_period_max": end,
        }
        try:
            resp = self._client.get(self._base_url, params=params, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise TransientError("SearchAPI 타임아웃") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"SearchAPI 호출 오류: {type(exc).__name__}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"SearchAPI 일시 오류: {resp.status_code}")
        if resp.status_code >= 400:
            raise PermanentError(f"SearchAPI 오류: {resp.status_code} {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise PermanentError("SearchAPI 응답이 JSON이 아닙니다.") from exc

    def _search_one(
        self,
        query: str,
        task: SearchTask,
        start: str,
        end: str,
        max_results: int,
        require_mention: bool,
    ) -> List[NewsHit]:
        hits: List[NewsHit] = []
        seen: set[str] = set()
        for page in range(1, max(1, task.max_pages) + 1):
            if len(hits) >= max_results:
                break
            results = coerce_news_results(self._fetch_page(query, task.locale, page, start, end))
            if not results:
                break
            added = 0
            for item in results:
                title = _text(item.get("title")) or _text(item.get("headline")) or _text(item.get("name"))
                url = pick_url(item)
                if not title or not url or should_exclude_url(url):
                    continue
                snippet = _text(item.get("snippet")) or _text(item.get("description")) or _text(item.get("summary"))
                if require_mention and task.company_terms and not mentions_company(task.company_terms, title, snippet):
                    continue
                key = normalize_url(url)
                if key in seen:
                    continue
                seen.add(key)
                published = _text(item.get("date")) or _text(item.get("published")) or _text(item.get("published_date"))
                hits.append(NewsHit(title=title, url=url, published_date=published, snippet=snippet))
                added += 1
                if len(hits) >= max_results:
                    break
            if added == 0:
                break
        return hits

    def _search_with_fallback(self, task: SearchTask, start: str, end: str, require_mention: bool) -> List[NewsHit]:
        primary = self._search_one(task.query, task, start, end, task.max_results, require_mention)
        if len(primary) >= fallback_threshold(task.max_results):
            return primary
        remaining = task.max_results - len(primary)
        if remaining <= 0:
            return primary
        secondary = self._search_one(f'"{task.query_company.strip()}"', task, start, end, remaining, require_mention)
        merged = list(primary)
        seen = {normalize_url(h.url) for h in primary}
        for hit in secondary:
            key = normalize_url(hit.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(hit)
            if len(merged) >= task.max_results:
                break
        return merged

    # -- task planning --------------------------------------------------------

    @staticmethod
    def _locales(config: ResearchConfig) -> List[SearchLocale]:
        opts = config.searchapi
        locales: List[SearchLocale] = []
        if opts.include_kr:
            locales.append(SearchLocale("KR", opts.kr_gl, opts.kr_hl, KR_TERMS))
        if opts.include_global:
            locales.append(SearchLocale("GLOBAL", opts.global_gl, opts.global_hl, GLOBAL_TERMS))
        return locales

    @staticmethod
    def _task_for(
        entry: WatchlistEntry, locale: SearchLocale, max_results: int, max_pages: int
    ) -> Optional[SearchTask]:
        query_company = entry.company
        if locale.label == "GLOBAL":
            domain = pick_domain_alias(entry.aliases)
            if has_hangul(entry.company) and not has_latin(entry.company):
                alias = domain or next(
                    (a for a in entry.aliases if has_latin(a) and should_use_company_term(a)), None
                )
                if alias is None:
                    return None
                query_company = alias
            elif domain:
                query_company = domain
        terms = tuple(
            dict.fromkeys(
                t.strip() for t in [entry.company, query_company, *entry.aliases] if should_use_company_term(t)
            )
        )
        return SearchTask(
            company=entry.company,
            query_company=query_company,
            company_terms=terms,
            category=entry.category_id,
            query=build_query(query_company, entry.keywords, locale),
            locale=locale,
            max_results=max_results,
            max_pages=max_pages,
        )

    def plan_tasks(self, config: ResearchConfig, watchlist: Sequence[WatchlistEntry]) -> List[SearchTask]:
        opts = config.searchapi
        locales = self._locales(config)
        tasks: List[SearchTask] = []
        for entry in watchlist:
            for locale in locales:
                task = self._task_for(entry, locale, opts.max_results_per_query, opts.max_pages_per_query)
                if task is not None:
                    tasks.append(task)
        return tasks

    def _global_tasks(self, config: ResearchConfig) -> List[SearchTask]:
        opts = config.searchapi
        global_locale = next((loc for loc in self._locales(config) if loc.label == "GLOBAL"), None)
        if global_locale is None:
            return []
        tasks: List[SearchTask] = []
        for entry in config.global_watchlist:
            task = self._task_for(
                entry,
                global_locale,
                opts.global_watchlist_max_results_per_query,
                opts.global_watchlist_max_pages_per_query,
            )
            if task is not None:
                tasks.append(task)
        return tasks

    def _category_tasks(self, config: ResearchConfig) -> List[SearchTask]:
        opts = config.searchapi
        tasks: List[SearchTask] = []
        for category in config.categories:
            keywords = [s for s in (category.name, category.description or "") if s.strip()]
            for locale in self._locales(config):
                tasks.append(
                    SearchTask(
                        company=category.name,
                        query_company=category.name,
                        company_terms=tuple(t for t in (category.name,) if should_use_company_term(t)),
                        category=category.id,
                        query=build_query(category.name, keywords, locale),
                        locale=locale,
                        max_results=opts.max_results_per_query,
                        max_pages=opts.max_pages_per_query,
                    )
                )
        return tasks

    def _run(self, tasks: Sequence[SearchTask], config: ResearchConfig, start: str, end: str) -> List[SourceItem]:
        require = config.searchapi.require_company_mention

        def _one(task: SearchTask) -> List[Tuple[SearchTask, NewsHit]]:
            try:
                hits = self._search_with_fallback(task, start, end, require)
            except ConnectorError as exc:
                self._logger.warning(
                    "news_search.query_failed",
                    extra={"q": task.query, "locale": task.locale.label, "error": str(exc)},
                )
                return []
            self._logger.info(
                "news_search.query",
                extra={"company": task.company, "locale": task.locale.label, "results": len(hits)},
            )
            return [(task, h) for h in hits]

        sources: List[SourceItem] = []
        for pairs in run_bounded(list(tasks), config.searchapi.concurrency, _one):
            for task, hit in pairs:
                try:
                    sources.append(
                        SourceItem(
                            company=task.company,
                            category=task.category,
                            title=hit.title,
                            url=hit.url,
                            published_date=hit.published_date,
                            note=f"[{task.locale.label}] {hit.snippet or ''}".strip(),
                        )
                    )
                except ValidationError:
                    continue
        return sources

    # -- company discovery ----------------------------------------------------

    def _discovery_targets(self, config: ResearchConfig, sources: Sequence[SourceItem]) -> Dict[str, int]:
        opts = config.searchapi
        domestic: Dict[str, set] = {cid: set() for cid in config.category_ids}
        for s in sources:
            if has_hangul(s.company):
                domestic.setdefault(s.category, set()).add(company_match_key(s.company))
        wanted: Dict[str, int] = {}
        budget = opts.max_new_companies_total
        for cid in config.category_ids:
            need = config.min_companies_per_category - len(domestic.get(cid, set()))
            take = min(need, opts.max_new_companies_per_category, budget)
            if take > 0:
                wanted[cid] = take
                budget -= take
        return wanted

    def discover_companies(
        self, config: ResearchConfig, report_date: date, sources: Sequence[SourceItem]
    ) -> List[WatchlistEntry]:
        """국내 회사가 부족한 카테고리에 대해 오라클로 신규 회사를 찾는다."""
        if self._oracle is None or not config.searchapi.discovery_enabled or config.watchlist_only:
            return []
        wanted = self._discovery_targets(config, sources)
        if not wanted:
            return []
        known_names = [w.company for w in [*config.watchlist, *config.global_watchlist]]
        known = {company_match_key(n) for n in [*known_names, *config.excluded_companies, *(s.company for s in sources)]}
        prompt = build_company_discovery_prompt(config, report_date, wanted, known_names)
        try:
            response = self._oracle.generate(prompt, web_search=True)
            parsed = parse_json_lenient(response.text)
        except (LLMError, JsonParseError) as exc:
            self._logger.warning("news_search.discovery_failed", extra={"error": str(exc)})
            return []

        raw = parsed.get("companies") if isinstance(parsed, dict) else None
        found: List[WatchlistEntry] = []
        per_category: Dict[str, int] = {}
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            name = _text(item.get("company"))
            cid = _text(item.get("category_id"))
            if not name or cid not in wanted or company_match_key(name) in known:
                continue
            if per_category.get(cid, 0) >= wanted[cid] or len(found) >= config.searchapi.max_new_companies_total:
                continue
            aliases = [a for a in item.get("aliases") or [] if isinstance(a, str) and a.strip()]
            found.append(WatchlistEntry(company=name, category_id=cid, aliases=aliases))
            known.add(company_match_key(name))
            per_category[cid] = per_category.get(cid, 0) + 1
        self._logger.info("news_search.discovery", extra={"wanted": wanted, "found": len(found)})
        return found

    # -- provider -------------------------------------------------------------

    def collect(
        self,
        config: ResearchConfig,
        report_date: date,
        *,
        retry_hint: Optional[str] = None,
    ) -> EvidenceBatch:
        start, end = _window(config, report_date)
        tasks = self.plan_tasks(config, config.watchlist) + self._global_tasks(config)
        if config.searchapi.include_category_queries:
            tasks += self._category_tasks(config)
        sources = self._run(tasks, config, start, end)

        discovered = self.discover_companies(config, report_date, sources)
        if discovered:
            extra_tasks = self.plan_tasks(config, discovered)
            tasks += extra_tasks
            sources += self._run(extra_tasks, config, start, end)

        unique: List[SourceItem] = []
        seen: set[str] = set()
        for s in sources:
            key = normalize_url(s.url)
            if key in seen:
                continue
            seen.add(key)
            unique.append(s)

        self._logger.info(
            "news_search.collected",
            extra={"queries": len(tasks), "results": len(sources), "kept": len(unique)},
        )
        return EvidenceBatch(
            sources=unique,
            meta=CollectionMeta(provider=self.name, queries=[t.query for t in tasks], results=len(unique)),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
