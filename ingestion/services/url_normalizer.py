"""URL helpers used for equality checks and input sanitation."""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import unquote_plus, urlsplit, urlunsplit

_WRAPPERS = (("<", ">"), ("(", ")"), ("[", "]"))


def _strip_wrappers(value: str) -> str:
    s = value.strip()
    changed = True
    while changed and len(s) >= 2:
        changed = False
        for opening, closing in _WRAPPERS:
            if s.startswith(opening) and s.endswith(closing):
                s = s[1:-1].strip()
                changed = True
    return s


def clean_http_url(value: Any) -> Optional[str]:
    """Return the trimmed absolute http(s) URL, or ``None``.

    Surrounding whitespace and ``<…>``/``(…)``/``[…]`` wrappers are removed. A
    missing scheme is never guessed (``www.example.com`` is rejected).
    """
    if not isinstance(value, str):
        return None
    s = _strip_wrappers(value)
    if not s or any(ch.isspace() for ch in s):
        return None
    try:
        parts = urlsplit(s)
        host = parts.hostname
        parts.port  # noqa: B018 - raises ValueError on a malformed port
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not host:
        return None
    return s


def _is_tracking_param(segment: str) -> bool:
    name = segment.split("=", 1)[0]
    return unquote_plus(name).lower().startswith("utm_")


def normalize_url(url: str) -> str:
    """Canonical form for equality comparison only (never for display).

    - fragment 제거
    - ``utm_*`` 쿼리 파라미터 제거 (나머지는 원래 인코딩/순서 유지)
    - 루트가 아닌 경로의 trailing slash 제거
    - scheme/host 소문자화
    파싱할 수 없거나 절대 URL이 아니면 trim된 입력을 그대로 돌려준다.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw

    netloc = parts.netloc
    userinfo, sep, hostport = netloc.rpartition("@")
    netloc = f"{userinfo}{sep}{hostport.lower()}"

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    segments = [seg for seg in parts.query.split("&") if seg and not _is_tracking_param(seg)]
    query = "&".join(segments)

    return urlunsplit((parts.scheme.lower(), netloc, path, query, ""))


def url_origin(url: str) -> Optional[str]:
    """``scheme://host`` with a leading ``www.`` removed; ``None`` for non-http(s) input."""
    cleaned = clean_http_url(url)
    if cleaned is None:
        return None
    parts = urlsplit(cleaned)
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme.lower()}://{host}{port}"
