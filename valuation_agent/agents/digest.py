# valuation_agent/agents/digest.py
"""
Structural digest of a page.

The model never sees raw HTML: extract_key_info() reduces markup to a small JSON
summary (title, description, headings, element counts, class sample and a
truncated, script/style/comment-free skeleton) to bound the prompt size.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, List

from bs4 import BeautifulSoup, Comment

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_HEADING_SAMPLES = 3
MAX_UNIQUE_CLASSES = 20
MAX_STRUCTURE_CHARS = 5000

DIGEST_FAILURE = "Failed to extract key information from HTML"

_INTER_TAG_WS = re.compile(r">\s+<")
_DESCRIPTION_NAME = re.compile(r"^description$", re.IGNORECASE)


def _heading_texts(root, name: str) -> List[str]:
    return [h.get_text(" ", strip=True) for h in root.find_all(name)]


def _unique_classes(root) -> List[str]:
    seen: List[str] = []
    for el in root.find_all(class_=True):
        for name in el.get("class") or []:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
                if len(seen) >= MAX_UNIQUE_CLASSES:
                    return seen
    return seen


def _structure(root) -> str:
    for el in root.find_all(["script", "style"]):
        el.decompose()
    for comment in root.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    markup = _INTER_TAG_WS.sub("><", root.decode_contents())
    return markup[:MAX_STRUCTURE_CHARS]


def _build_digest(html: str) -> Dict[str, Any]:
    soup = BeautifulSoup(html, "html.parser")

    title = "No title found"
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    description = "No description found"
    meta = soup.find("meta", attrs={"name": _DESCRIPTION_NAME})
    if meta and meta.get("content"):
        description = meta.get("content")

    h1s = _heading_texts(soup, "h1")
    h2s = _heading_texts(soup, "h2")

    # element counts, classes and skeleton come from the body when there is one
    root = soup.body or soup

    return {
        "title": title,
        "description": description,
        "headings": {
            "h1": len(h1s),
            "h2": len(h2s),
            "samples": h1s[:MAX_HEADING_SAMPLES] + h2s[:MAX_HEADING_SAMPLES],
        },
        "elements": {
            "forms": len(root.find_all("form")),
            "images": len(root.find_all("img")),
            "links": len(root.find_all("a")),
        },
        "styling": {
            "uniqueClasses": _unique_classes(root),
        },
        "structure": _structure(root),
    }


def extract_key_info(html: str) -> str:
    """
    Return the JSON digest for `html`. Never raises: on any internal error the
    DIGEST_FAILURE sentinel is returned so the pipeline can still proceed.
    """
    try:
        return json.dumps(_build_digest(html or ""), indent=2)
    except Exception as e:
        logger.exception("Error extracting key info from HTML: %s", e)
        return DIGEST_FAILURE
