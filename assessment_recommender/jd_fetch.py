from __future__ import annotations

"""
Job description fetching for the ``jobUrl`` request field.

The page is downloaded once (no retries) and its main content is
pulled out with ``trafilatura``; pages where that finds nothing fall
back to the visible text of the whole document.  Every failure is
logged and reported as ``None`` so the request can carry on with its
other inputs.
"""

from typing import Optional

import httpx
import trafilatura
from loguru import logger

from .config import (
    FETCH_TIMEOUT,
    HTTP_MAX_BYTES,
    HTTP_MAX_REDIRECTS,
    HTTP_USER_AGENT,
)
from .normalize import clean_text


def _download(url: str, timeout: float) -> Optional[str]:
    try:
        with httpx.Client(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout),
            max_redirects=HTTP_MAX_REDIRECTS,
            headers={"User-Agent": HTTP_USER_AGENT},
        ) as client:
            r = client.get(url)
    except httpx.TimeoutException:
        logger.warning("Job page fetch timed out after {}s: {}", timeout, url)
        return None
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("Job page fetch failed for {}: {}", url, e)
        return None

    if r.status_code >= 400:
        logger.warning("Job page fetch: HTTP {} for {}", r.status_code, url)
        return None
    if len(r.content) > HTTP_MAX_BYTES:
        logger.warning("Job page too large ({} bytes > {}): {}", len(r.content), HTTP_MAX_BYTES, url)
        return None
    return r.text


def extract_main_text(html: str) -> str:
    """Main article text of a page, or its full visible text."""
    text: Optional[str] = None
    try:
        text = trafilatura.extract(html)
    except Exception as e:
        logger.warning("Main-content extraction failed, using full page: {}", e)
    return clean_text(text or html)


def fetch_and_extract(url: str, timeout: float = FETCH_TIMEOUT) -> Optional[str]:
    """
    Fetch ``url`` and return its cleaned main text.

    Returns ``None`` on timeouts, transport errors, HTTP error statuses,
    oversized pages or pages with no text at all.
    """
    html = _download(url, timeout)
    if html is None:
        return None
    text = extract_main_text(html)
    return text or None
