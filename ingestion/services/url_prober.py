"""Live URL prober (hard/soft 404, redirects) and homepage-fallback detection.

네트워크 오류는 예외가 아니라 결과 데이터(ok=False, reason=...)로 돌려준다.
"""

from __future__ import annotations

import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple
from urllib.parse import urlsplit

import httpx

from ingestion.services.url_normalizer import clean_http_url, normalize_url, url_origin
from ingestion.utils.logging import get_logger

USER_AGENT = "Mozilla/5.0 (compatible; MarketRadarBot/1.0; +https://example.invalid/bot)"

# 봇/HEAD 차단 응답이지만 페이지 자체는 존재한다고 본다.
BOT_BLOCK_STATUSES = frozenset({401, 403, 406, 418, 429, 451})

SOFT_404_BODY_BYTES = 8 * 1024
SIGNATURE_BODY_BYTES = 4 * 1024

_SOFT_404_RE = re.compile(
    "|".join(
        [
            r"page\s+(?:was\s+)?not\s+found",
            r"404\s*(?:-|:|\|)?\s*not\s+found",
            r"the\s+page\s+you\s+(?:were|are)\s+looking\s+for\s+(?:could\s+not|cannot|can't|doesn't|does\s+not)",
            r"(?:this|the)\s+page\s+(?:does\s+not|doesn't)\s+exist",
            r"(?:article|story|post)\s+(?:not\s+found|has\s+been\s+removed|is\s+no\s+longer\s+available)",
            r"페이지를\s*찾을\s*수\s*없습니다",
            r"요청하신\s*페이지[^<]{0,30}(?:찾을\s*수\s*없|존재하지\s*않)",
            r"존재하지\s*않는\s*(?:페이지|기사|게시물)",
            r"(?:삭제|제거)된\s*(?:기사|게시물|페이지)",
            r"페이지가\s*존재하지\s*않습니다",
        ]
    ),
    re.IGNORECASE,
)
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class UrlCheckResult:
    url: str
    ok: bool
    status: Optional[int] = None
    reason: Optional[str] = None
    final_url: Optional[str] = None


def is_ok_status(status: int) -> bool:
    return 200 <= status <= 399 or status in BOT_BLOCK_STATUSES


def looks_like_soft_404(html: str) -> bool:
    return bool(_SOFT_404_RE.search(html))


def _is_html(content_type: Optional[str]) -> bool:
    # content-type이 없으면 HTML일 수 있다고 본다.
    return not content_type or "html" in content_type.lower()


@dataclass
class _Fetched:
    status: int
    final_url: str
    content_type: Optional[str]
    body: Optional[str]


def _fetch(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    timeout: float,
    body_limit: int = 0,
) -> _Fetched:
    """Issue one request following redirects; read at most ``body_limit`` bytes of body."""
    with client.stream(method, url, timeout=timeout, follow_redirects=True) as resp:
        body: Optional[str] = None
        if body_limit > 0 and method == "GET":
            chunks: List[bytes] = []
            size = 0
            for chunk in resp.iter_bytes():
                chunks.append(chunk)
                size += len(chunk)
                if size >= body_limit:
                    break
            raw = b"".join(chunks)[:body_limit]
            body = raw.decode(resp.encoding or "utf-8", errors="replace")
        return _Fetched(
            status=resp.status_code,
            final_url=str(resp.url),
            content_type=resp.headers.get("content-type"),
            body=body,
        )


def _build_client(timeout: float) -> httpx.Client:
    return httpx.Client(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml,*/*;q=0.8"},
    )


class UrlProber:
    """HEAD → (>=400이면) GET 순서로 URL 생존 여부를 판정한다."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        *,
        timeout_ms: int = 8000,
        soft_404_enabled: bool = True,
    ) -> None:
        self._timeout = max(0.5, timeout_ms / 1000.0)
        self._client = client or _build_client(self._timeout)
        self._owns_client = client is None
        self._soft_404_enabled = soft_404_enabled
        self._logger = get_logger(__name__)

    @property
    def client(self) -> httpx.Client:
        return self._client

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def check(self, url: str) -> UrlCheckResult:
        try:
            fetched = _fetch(self._client, "HEAD", url, timeout=self._timeout)
            if fetched.status >= 400:
                fetched = self._get(url)
            if not is_ok_status(fetched.status):
                return UrlCheckResult(url=url, ok=False, status=fetched.status, reason=f"HTTP_{fetched.status}")

            if (
                self._soft_404_enabled
                and 200 <= fetched.status <= 299
                and _is_html(fetched.content_type)
            ):
                if fetched.body is None:
                    fetched = self._get(url)
                    # HEAD와 GET 응답이 다를 수 있어 상태를 다시 판정한다.
                    if not is_ok_status(fetched.status):
                        return UrlCheckResult(
                            url=url, ok=False, status=fetched.status, reason=f"HTTP_{fetched.status}"
                        )
                if fetched.body is not None and looks_like_soft_404(fetched.body):
                    return UrlCheckResult(url=url, ok=False, status=fetched.status, reason="SOFT_404")
            final_url = fetched.final_url if normalize_url(fetched.final_url) != normalize_url(url) else None
            return UrlCheckResult(url=url, ok=True, status=fetched.status, final_url=final_url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return UrlCheckResult(url=url, ok=False, reason=f"{type(exc).__name__}: {exc}")

    def _get(self, url: str) -> _Fetched:
        limit = SOFT_404_BODY_BYTES if self._soft_404_enabled else 0
        return _fetch(self._client, "GET", url, timeout=self._timeout, body_limit=limit)

    def check_urls(self, urls: Iterable[str], concurrency: int = 6) -> Dict[str, UrlCheckResult]:
        """Probe each distinct http(s) URL once with a fixed-size worker pool."""
        unique: List[str] = []
        for url in urls:
            if url in unique or clean_http_url(url) != url:
                continue
            unique.append(url)

        results: Dict[str, UrlCheckResult] = {}
        lock = threading.Lock()
        cursor = {"next": 0}

        def _worker() -> None:
            while True:
                with lock:
                    index = cursor["next"]
                    cursor["next"] += 1
                if index >= len(unique):
                    return
                target = unique[index]
                result = self.check(target)
                with lock:
                    results[target] = result

        workers = max(1, min(int(concurrency), len(unique) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="url-probe") as pool:
            futures = [pool.submit(_worker) for _ in range(workers)]
            for future in futures:
                future.result()

        failed = sum(1 for r in results.values() if not r.ok)
        self._logger.info("url_check.done", extra={"checked": len(results), "failed": failed})
        return results


def page_signature(html: str) -> str:
    """정규화된 <title> + 공백 축약된 본문 앞부분."""
    prefix = html[:SIGNATURE_BODY_BYTES]
    match = _TITLE_RE.search(html)
    title = _WS_RE.sub(" ", match.group(1)).strip().lower() if match else ""
    return f"{title}\n{_WS_RE.sub(' ', prefix).strip()}"


def _is_root_path(url: str) -> bool:
    parts = urlsplit(url)
    return parts.path in ("", "/") and not parts.query


class HomepageFallbackDetector:
    """존재하지 않는 기사 URL이 회사 홈페이지를 그대로 보여주는 경우를 찾는다."""

    def __init__(self, client: Optional[httpx.Client] = None, *, timeout_ms: int = 8000) -> None:
        self._timeout = max(0.5, timeout_ms / 1000.0)
        self._client = client or _build_client(self._timeout)
        self._owns_client = client is None
        self._cache: Dict[str, Optional[str]] = {}
        self._logger = get_logger(__name__)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _signature(self, url: str) -> Optional[str]:
        if url in self._cache:
            return self._cache[url]
        signature: Optional[str] = None
        try:
            fetched = _fetch(self._client, "GET", url, timeout=self._timeout, body_limit=SIGNATURE_BODY_BYTES)
            if 200 <= fetched.status <= 299 and fetched.body:
                signature = page_signature(fetched.body)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self._logger.info("homepage_check.fetch_failed", extra={"url": url, "error": str(exc)})
        self._cache[url] = signature
        return signature

    def find_spoofed(self, urls: Iterable[str], homepages: Mapping[str, str]) -> Set[str]:
        """Return non-root URLs whose live page equals their origin's homepage."""
        origins: Dict[str, str] = {}
        for homepage in homepages.values():
            origin = url_origin(homepage)
            if origin is not None and origin not in origins:
                origins[origin] = homepage

        spoofed: Set[str] = set()
        for url in dict.fromkeys(urls):
            origin = url_origin(url)
            if origin is None or origin not in origins or _is_root_path(url):
                continue
            home_signature = self._signature(_root_of(origins[origin]))
            if home_signature is None:
                continue
            if self._signature(url) == home_signature:
                spoofed.add(url)
        if spoofed:
            self._logger.warning("homepage_check.spoofed", extra={"count": len(spoofed)})
        return spoofed


def _root_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}/"


def split_results(results: Mapping[str, UrlCheckResult]) -> Tuple[Set[str], Set[str]]:
    """(hard/soft 404 URL 집합, 도달 불명 URL 집합)."""
    dead: Set[str] = set()
    unknown: Set[str] = set()
    for url, result in results.items():
        if result.ok:
            continue
        if result.reason == "SOFT_404" or (result.status is not None and 400 <= result.status <= 499):
            dead.add(url)
        else:
            unknown.add(url)
    return dead, unknown
