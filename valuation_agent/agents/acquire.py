# valuation_agent/agents/acquire.py
"""
Content acquirer.

Fetches the markup that represents a page under evaluation.

- Preview targets (loopback hosts or hosts containing "preview") are produced by
  an asynchronous build, so they are polled with exponential backoff until the
  rendered output looks ready. Frames are resolved first (inline srcdoc, then an
  external src), then a region cascade picks the most specific preview-like
  element.
- External targets get a single GET, optionally narrowed to the first matching
  tag.

fetch_html(url, selector=None) -> str, raises AcquisitionError.
"""
from __future__ import annotations
import asyncio
import logging
import re
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

from valuation_agent.config import Config, cfg

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

USER_AGENT = "Mozilla/5.0 (compatible; ValuationAgent/1.0)"

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

# Preview readiness
MIN_CONTENT_CHARS = 100
LOADING_MARKER = "Loading preview"

# Backoff: 1000, 1500, 2250, 3375, 5062.5 ms
MAX_PREVIEW_ATTEMPTS = 5
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 1.5


class AcquisitionError(Exception):
    """Raised when no content could be obtained for a URL."""


def is_preview_url(url: str) -> bool:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    return host in LOOPBACK_HOSTS or host.endswith(".localhost") or "preview" in host


def _is_safe_scheme(url: str) -> bool:
    p = urlparse(url)
    return p.scheme in ("http", "https")


def _is_ready(content: Optional[str]) -> bool:
    return bool(content) and len(content) > MIN_CONTENT_CHARS and LOADING_MARKER not in content


async def _backoff_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def _get(client: httpx.AsyncClient, url: str) -> httpx.Response:
    try:
        resp = await client.get(url, headers={"User-Agent": USER_AGENT})
    except httpx.HTTPError as e:
        raise AcquisitionError(f"Failed to fetch HTML from {url}: {e}") from e
    if not resp.is_success:
        raise AcquisitionError(f"Failed to fetch HTML: {resp.status_code} {resp.reason_phrase}")
    return resp


def _inner(tag: Optional[Tag]) -> str:
    if tag is None:
        return ""
    return tag.decode_contents().strip()


def _srcdoc_content(soup: BeautifulSoup) -> str:
    # the parser has already entity-decoded the attribute value
    frame = soup.find("iframe", srcdoc=True)
    if frame is None:
        return ""
    return (frame.get("srcdoc") or "").strip()


async def _fetch_frame_document(client: httpx.AsyncClient, soup: BeautifulSoup, page_url: str) -> str:
    frame = soup.find("iframe", src=True)
    if frame is None:
        return ""
    src = (frame.get("src") or "").strip()
    if not src:
        return ""
    try:
        frame_url = urljoin(page_url, src)
        if not _is_safe_scheme(frame_url):
            logger.debug("Skipping frame with unsupported src: %s", src)
            return ""
        logger.info("Found iframe with src: %s. Fetching its content...", frame_url)
        resp = await _get(client, frame_url)
    except (AcquisitionError, ValueError, httpx.InvalidURL) as e:
        logger.warning("Failed to fetch iframe content from %s: %s", src, e)
        return ""
    return resp.text.strip()


def _has_preview_class(tag: Tag) -> bool:
    if tag.name != "div":
        return False
    return "preview" in " ".join(tag.get("class") or [])


def _region_candidates(soup: BeautifulSoup) -> List[Callable[[], Optional[Tag]]]:
    # most specific first
    return [
        lambda: soup.find(_has_preview_class),
        lambda: soup.find("div", attrs={"role": "tabpanel"}),
        lambda: soup.find("iframe"),
        lambda: soup.find("code"),
        lambda: soup.find("main"),
        lambda: soup.body,
    ]


def _select_preview_region(soup: BeautifulSoup, html: str) -> str:
    for find in _region_candidates(soup):
        content = _inner(find())
        if len(content) > MIN_CONTENT_CHARS:
            return content
    if soup.body is not None:
        return _inner(soup.body)
    return html


async def _fetch_preview_once(client: httpx.AsyncClient, url: str) -> str:
    resp = await _get(client, url)
    html = resp.text
    soup = BeautifulSoup(html, "html.parser")

    srcdoc = _srcdoc_content(soup)
    if srcdoc:
        logger.info("Using iframe srcdoc content for valuation")
        return srcdoc

    framed = await _fetch_frame_document(client, soup, url)
    if framed:
        logger.info("Using iframe document content for valuation")
        return framed

    return _select_preview_region(soup, html)


async def _fetch_preview_with_retries(client: httpx.AsyncClient, url: str) -> str:
    delay = INITIAL_BACKOFF_SECONDS
    last_error: Optional[AcquisitionError] = None

    for attempt in range(1, MAX_PREVIEW_ATTEMPTS + 1):
        remaining = MAX_PREVIEW_ATTEMPTS - attempt
        try:
            content = await _fetch_preview_once(client, url)
            if _is_ready(content):
                return content
            logger.info("Preview content not ready yet, retrying... (%d attempts left)", remaining)
        except AcquisitionError as e:
            last_error = e
            logger.warning("Error fetching preview (%d attempts left): %s", remaining, e)

        await _backoff_sleep(delay)
        delay *= BACKOFF_MULTIPLIER

    if last_error is not None:
        raise last_error
    raise AcquisitionError("Failed to fetch preview content after multiple attempts")


def _extract_tag_content(html: str, selector: str) -> Optional[str]:
    tag = re.escape(selector)
    match = re.search(rf"<{tag}[^>]*>([\s\S]*?)</{tag}>", html, re.IGNORECASE)
    if match and match.group(1):
        return match.group(1).strip()
    return None


async def _fetch_external(client: httpx.AsyncClient, url: str, selector: Optional[str]) -> str:
    resp = await _get(client, url)
    html = resp.text
    if selector:
        extracted = _extract_tag_content(html, selector)
        if extracted:
            return extracted
    return html


def make_http_client(env: Optional[Config] = None) -> httpx.AsyncClient:
    env = env or cfg
    return httpx.AsyncClient(
        timeout=httpx.Timeout(env.HTTP_TIMEOUT),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )


async def fetch_html(url: str,
                     selector: Optional[str] = None,
                     client: Optional[httpx.AsyncClient] = None,
                     env: Optional[Config] = None) -> str:
    """
    Fetch representative HTML for `url`.

    Preview targets are retried with backoff and run through frame resolution
    and the region cascade; `selector` is only honoured for external targets.
    A caller-supplied `client` is used as-is and left open.
    """
    if client is None:
        async with make_http_client(env) as own_client:
            return await fetch_html(url, selector=selector, client=own_client, env=env)

    if is_preview_url(url):
        return await _fetch_preview_with_retries(client, url)
    return await _fetch_external(client, url, selector)
