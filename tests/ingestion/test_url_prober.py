from __future__ import annotations

import httpx

from ingestion.services.url_prober import (
    HomepageFallbackDetector,
    UrlCheckResult,
    UrlProber,
    is_ok_status,
    looks_like_soft_404,
    page_signature,
    split_results,
)

HOME_HTML = "<html><head><title>Acme - Home</title></head><body>Welcome to Acme</body></html>"
ARTICLE_HTML = "<html><head><title>Acme raises Series A</title></head><body>Acme announced funding.</body></html>"
SOFT_404_HTML = "<html><head><title>Acme</title></head><body><h1>Page not found</h1></body></html>"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _html(status: int, body: str = "") -> httpx.Response:
    return httpx.Response(status, headers={"content-type": "text/html; charset=utf-8"}, text=body)


def test_status_classification():
    assert is_ok_status(200)
    assert is_ok_status(301)
    assert is_ok_status(403)
    assert is_ok_status(429)
    assert not is_ok_status(404)
    assert not is_ok_status(410)
    assert not is_ok_status(500)


def test_soft_404_patterns_cover_english_and_korean():
    assert looks_like_soft_404(SOFT_404_HTML)
    assert looks_like_soft_404("<p>요청하신 페이지를 찾을 수 없습니다</p>")
    assert looks_like_soft_404("<div>존재하지 않는 기사입니다</div>")
    assert not looks_like_soft_404(ARTICLE_HTML)


def test_hard_404_after_head_falls_back_to_get():
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return _html(404, "gone")

    prober = UrlProber(_client(handler))

    result = prober.check("https://b.example/old")

    assert methods == ["HEAD", "GET"]
    assert result == UrlCheckResult(url="https://b.example/old", ok=False, status=404, reason="HTTP_404")


def test_head_not_allowed_uses_get_status():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(405)
        return _html(200, ARTICLE_HTML)

    result = UrlProber(_client(handler)).check("https://a.example/news/1")

    assert result.ok
    assert result.status == 200
    assert result.final_url is None


def test_soft_404_detected_on_html_200():
    def handler(request: httpx.Request) -> httpx.Response:
        return _html(200, SOFT_404_HTML if request.method == "GET" else "")

    result = UrlProber(_client(handler)).check("https://a.example/missing-story")

    assert not result.ok
    assert result.reason == "SOFT_404"
    assert result.status == 200


def test_body_fetch_status_is_rechecked_after_head_success():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return _html(200)
        return _html(404, "gone")

    result = UrlProber(_client(handler)).check("https://x.example/a")

    assert result == UrlCheckResult(url="https://x.example/a", ok=False, status=404, reason="HTTP_404")


def test_soft_404_detection_can_be_disabled():
    def handler(request: httpx.Request) -> httpx.Response:
        return _html(200, SOFT_404_HTML)

    result = UrlProber(_client(handler), soft_404_enabled=False).check("https://a.example/missing-story")

    assert result.ok


def test_non_html_is_not_body_checked():
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF")

    result = UrlProber(_client(handler)).check("https://a.example/report.pdf")

    assert result.ok
    assert methods == ["HEAD"]


def test_bot_block_counts_as_reachable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    result = UrlProber(_client(handler)).check("https://a.example/protected")

    assert result.ok
    assert result.status == 403


def test_redirect_sets_final_url():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"location": "https://a.example/new"})
        return _html(200, ARTICLE_HTML)

    result = UrlProber(_client(handler)).check("https://a.example/old")

    assert result.ok
    assert result.final_url == "https://a.example/new"


def test_transport_error_is_data_not_exception():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = UrlProber(_client(handler)).check("https://down.example/a")

    assert not result.ok
    assert result.status is None
    assert result.reason and result.reason.startswith("ConnectError")


def test_check_urls_probes_each_distinct_url_once():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            seen.append(str(request.url))
        status = 404 if "dead" in request.url.path else 200
        return httpx.Response(status, headers={"content-type": "application/json"})

    prober = UrlProber(_client(handler))
    urls = ["https://a.example/1", "https://a.example/dead", "https://a.example/1", "not-a-url"]

    results = prober.check_urls(urls, concurrency=3)

    assert set(results) == {"https://a.example/1", "https://a.example/dead"}
    assert sorted(seen) == ["https://a.example/1", "https://a.example/dead"]
    assert results["https://a.example/1"].ok
    assert results["https://a.example/dead"].reason == "HTTP_404"


def test_split_results_separates_dead_from_unknown():
    results = {
        "https://a/1": UrlCheckResult("https://a/1", ok=True, status=200),
        "https://a/2": UrlCheckResult("https://a/2", ok=False, status=404, reason="HTTP_404"),
        "https://a/3": UrlCheckResult("https://a/3", ok=False, status=200, reason="SOFT_404"),
        "https://a/4": UrlCheckResult("https://a/4", ok=False, status=503, reason="HTTP_503"),
        "https://a/5": UrlCheckResult("https://a/5", ok=False, reason="ReadTimeout: timed out"),
    }

    dead, unknown = split_results(results)

    assert dead == {"https://a/2", "https://a/3"}
    assert unknown == {"https://a/4", "https://a/5"}


def test_page_signature_normalizes_title_and_whitespace():
    a = page_signature("<title> Acme   Home </title>\n<body>x</body>")
    b = page_signature("<TITLE>acme home</TITLE>\n<body>x</body>")

    assert a.split("\n")[0] == b.split("\n")[0] == "acme home"


def test_homepage_fallback_detector_flags_spoofed_article():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path in ("/", "/fake-article"):
            return _html(200, HOME_HTML)
        return _html(200, ARTICLE_HTML)

    detector = HomepageFallbackDetector(_client(handler))
    urls = ["https://www.acme.example/fake-article", "https://www.acme.example/real", "https://other.example/fake-article"]

    spoofed = detector.find_spoofed(urls, {"Acme": "https://acme.example"})

    assert spoofed == {"https://www.acme.example/fake-article"}


def test_homepage_fallback_detector_ignores_root_urls():
    def handler(request: httpx.Request) -> httpx.Response:
        return _html(200, HOME_HTML)

    detector = HomepageFallbackDetector(_client(handler))

    assert detector.find_spoofed(["https://acme.example/"], {"Acme": "https://acme.example/"}) == set()
