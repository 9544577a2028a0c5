from __future__ import annotations

import functools

import httpx
import pytest

from assessment_recommender import jd_fetch
from assessment_recommender.normalize import clamp_text_length, clean_text, join_inputs, strip_html

PAGE = """
<html><head><title>Job</title><style>.x{color:red}</style><script>var a = 1;</script></head>
<body><nav>Home | Careers</nav>
<article><h1>Senior Java Developer</h1>
<p>We are looking for a Java developer to build payment services with Spring Boot.
You will collaborate closely with product and QA teams in an agile environment.</p>
<p>Experience with SQL databases and cloud deployments is a plus.</p></article>
</body></html>
"""


@pytest.fixture
def mock_http(monkeypatch):
    def install(handler):
        real_client = httpx.Client
        monkeypatch.setattr(
            jd_fetch.httpx,
            "Client",
            functools.partial(real_client, transport=httpx.MockTransport(handler)),
        )

    return install


def test_fetch_extracts_page_text(mock_http):
    mock_http(lambda request: httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}))
    text = jd_fetch.fetch_and_extract("https://jobs.example.com/1")
    assert text is not None
    assert "Java developer" in text
    assert "var a" not in text
    assert "<p>" not in text


def test_fetch_sends_user_agent(mock_http):
    seen = {}

    def handler(request):
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(200, text="<p>Hello</p>")

    mock_http(handler)
    jd_fetch.fetch_and_extract("https://jobs.example.com/1")
    assert seen["ua"] == "SHL-Assessment-Recommender/1.0"


def test_fetch_http_error_returns_none(mock_http):
    mock_http(lambda request: httpx.Response(404, text="missing"))
    assert jd_fetch.fetch_and_extract("https://jobs.example.com/404") is None


def test_fetch_connection_error_returns_none(mock_http):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    mock_http(handler)
    assert jd_fetch.fetch_and_extract("https://jobs.example.com/down") is None


def test_fetch_timeout_returns_none(mock_http):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    mock_http(handler)
    assert jd_fetch.fetch_and_extract("https://jobs.example.com/slow") is None


def test_fetch_oversized_page_returns_none(mock_http, monkeypatch):
    monkeypatch.setattr(jd_fetch, "HTTP_MAX_BYTES", 10)
    mock_http(lambda request: httpx.Response(200, text=PAGE))
    assert jd_fetch.fetch_and_extract("https://jobs.example.com/big") is None


def test_extraction_failure_falls_back_to_page_text(mock_http, monkeypatch):
    def boom(html):
        raise RuntimeError("parser crashed")

    monkeypatch.setattr(jd_fetch.trafilatura, "extract", boom)
    mock_http(lambda request: httpx.Response(200, text=PAGE))
    text = jd_fetch.fetch_and_extract("https://jobs.example.com/1")
    assert text is not None
    assert "Java developer" in text
    assert "var a" not in text


def test_strip_html_drops_scripts_and_tags():
    assert strip_html("<p>Hello <b>world</b> .</p><script>x()</script>") == "Hello world."
    assert strip_html("plain text") == "plain text"


def test_clean_text_normalises_whitespace_and_length():
    assert clean_text("  a\n\n b\t c ") == "a b c"
    assert clean_text(None) == ""
    assert len(clamp_text_length("x" * 50, max_chars=10)) == 10


def test_join_inputs_skips_missing_parts():
    assert join_inputs("hiring", None, "java skills") == "hiring java skills"
    assert join_inputs(None, "", None) == ""
