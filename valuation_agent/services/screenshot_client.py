# valuation_agent/services/screenshot_client.py
"""
Screenshot capture through an external screenshot API.

capture_screenshot(options, env=None) -> bytes
to_data_url(data, mime_type) -> str

Only options the caller actually set are sent; the service's own defaults apply
to everything else. No retry here: a non-2xx response or a transport failure
raises CaptureError.
"""
from __future__ import annotations
import base64
import logging
from typing import Dict, List, Optional, Tuple

import httpx

from valuation_agent.config import Config, cfg
from valuation_agent.models import ScreenshotOptions

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# option attribute -> query parameter
_PARAM_NAMES = {
    "format": "format",
    "block_ads": "block_ads",
    "block_cookie_banners": "block_cookie_banners",
    "block_trackers": "block_trackers",
    "image_quality": "image_quality",
    "full_page": "full_page",
    "delay": "delay",
    "timeout": "timeout",
}

RESPONSE_TYPE = "by_format"


class CaptureError(Exception):
    """Screenshot service failed. status_code is None when no response arrived."""

    def __init__(self, status_code: Optional[int], reason: str):
        if status_code is None:
            super().__init__(f"Screenshot API error: {reason}")
        else:
            super().__init__(f"Screenshot API error: {status_code} {reason}")
        self.status_code = status_code
        self.reason = reason


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(options: ScreenshotOptions, access_key: Optional[str]) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = [
        ("access_key", access_key or ""),
        ("url", options.url),
    ]
    for attr, value in options.model_dump(exclude_none=True, exclude={"url"}).items():
        params.append((_PARAM_NAMES[attr], _format_value(value)))
    params.append(("response_type", RESPONSE_TYPE))
    return params


async def capture_screenshot(options: ScreenshotOptions,
                             env: Optional[Config] = None,
                             client: Optional[httpx.AsyncClient] = None) -> bytes:
    env = env or cfg
    if not env.SCREENSHOT_API_KEY:
        logger.warning("SCREENSHOT_API_KEY is not set; the screenshot service will likely reject the request")

    params = build_query_params(options, env.SCREENSHOT_API_KEY)
    logger.info("Capturing screenshot of %s", options.url)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=httpx.Timeout(env.HTTP_TIMEOUT)) as own_client:
                resp = await own_client.get(env.SCREENSHOT_API_URL, params=params)
        else:
            resp = await client.get(env.SCREENSHOT_API_URL, params=params)
    except httpx.HTTPError as e:
        raise CaptureError(None, str(e) or type(e).__name__) from e

    if not resp.is_success:
        raise CaptureError(resp.status_code, resp.reason_phrase)
    return resp.content


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(data_url: str) -> Dict[str, object]:
    """Split a base64 data URL back into mime type and raw bytes."""
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise ValueError("not a base64 data URL")
    mime_type = header[len("data:"):].split(";", 1)[0]
    return {"mime_type": mime_type, "data": base64.b64decode(payload)}
