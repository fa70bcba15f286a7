# valuation_agent/agents/judge.py
"""
valuation_agent/agents/judge.py

Purpose
-------
Ask the LLM how well a page matches the user's requirements and turn its
free-form, streamed answer into an EvaluationResult.

Primary function:
    judge(requirements, content, kind="dom", env=None, streamer=None) -> EvaluationResult

Input shapes
------------
- kind="dom": content is the JSON digest from digest.extract_key_info
- kind="screenshot": content is an image data URL

Output contract asked of the model
----------------------------------
{
  "matchScore": 0-100,
  "analysis": "...",
  "suggestions": ["...", ...]
}

The model is told to answer with JSON only, but nothing guarantees it. The
first "{" to the last "}" of the drained stream is parsed; anything unusable is
replaced by FALLBACK_EVALUATION and never raised.
"""

from __future__ import annotations
import json
import logging
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from valuation_agent.config import Config, cfg
from valuation_agent.models import EvaluationResult
from valuation_agent.services.llm_client import stream_text

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Streamer = Callable[[List[Dict[str, Any]], Config], Any]

NO_ANALYSIS = "No analysis provided"
NO_SUGGESTIONS = ["No suggestions provided"]

FALLBACK_EVALUATION = {
    "matchScore": 0,
    "analysis": (
        "The evaluation could not be completed. The preview content may not be fully "
        "loaded yet or may be in an unexpected format."
    ),
    "suggestions": [
        "Wait for the preview to fully load",
        "Try refreshing the page",
        "Check if the preview is displaying correctly",
    ],
}

_OUTPUT_CONTRACT = """Provide a match score from 0-100, where 100 is a perfect match.
Provide a detailed analysis of what matches and what doesn't.
Provide specific suggestions for improvements.
Format your response as a JSON object with the following structure:
{
  "matchScore": number,
  "analysis": string,
  "suggestions": string[]
}
Only respond with valid JSON. Do not include any other text."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _build_dom_messages(requirements: str, digest: str) -> List[Dict[str, Any]]:
    system = (
        "You are a website valuation agent that evaluates web pages against initial requirements.\n"
        "Analyze the provided HTML structure and determine how well it matches the initial requirements.\n"
        + _OUTPUT_CONTRACT
    )
    user = f"Initial Requirements: {requirements}\n\nWeb Page Structure: {digest}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _build_screenshot_messages(requirements: str, data_url: str) -> List[Dict[str, Any]]:
    system = (
        "You are a website valuation agent that evaluates screenshots against initial requirements.\n"
        "Analyze the provided screenshot and determine how well it matches the initial requirements.\n"
        + _OUTPUT_CONTRACT
    )
    user = [
        {"type": "text", "text": f"Initial Requirements: {requirements}\n\nScreenshot:"},
        {"type": "image_url", "image_url": {"url": data_url}},
    ]
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_messages(requirements: str, content: str, kind: str = "dom") -> List[Dict[str, Any]]:
    if kind == "screenshot":
        return _build_screenshot_messages(requirements, content)
    return _build_dom_messages(requirements, content)


async def _drain(chunks: AsyncIterator[Any]) -> str:
    parts: List[str] = []
    async for chunk in chunks:
        if chunk is None:
            continue
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        parts.append(str(chunk))
    return "".join(parts)


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Greedy outer-brace match followed by json.loads. Returns None when there is
    no object to recover.
    """
    if not text or not isinstance(text, str):
        return None
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _coerce_score(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return max(0.0, min(score, 100.0))


def _as_suggestions(value: Any, fill_empty: bool) -> List[str]:
    if value is None:
        return list(NO_SUGGESTIONS)
    if isinstance(value, str):
        items = [value] if value.strip() else []
    elif isinstance(value, list):
        items = [str(i) for i in value if i is not None]
    else:
        items = [str(value)]
    if not items and fill_empty:
        return list(NO_SUGGESTIONS)
    return items


def normalize_evaluation(raw: Optional[Dict[str, Any]], fill_empty_suggestions: bool = False) -> EvaluationResult:
    """
    Field-level defaulting of a parsed model answer. `raw=None` means the
    answer could not be parsed and yields the fallback evaluation.
    """
    data = raw if raw is not None else FALLBACK_EVALUATION
    return EvaluationResult(
        match_score=_coerce_score(data.get("matchScore")),
        analysis=str(data.get("analysis") or NO_ANALYSIS),
        suggestions=_as_suggestions(data.get("suggestions"), fill_empty_suggestions),
    )


async def judge(requirements: str,
                content: str,
                kind: str = "dom",
                env: Optional[Config] = None,
                streamer: Optional[Streamer] = None) -> EvaluationResult:
    env = env or cfg
    streamer = streamer or stream_text

    messages = build_messages(requirements, content, kind=kind)
    result = streamer(messages, env)
    text = await _drain(result.text_stream())
    logger.debug("Model answered with %d characters", len(text))

    parsed = _extract_json_object(text)
    if parsed is None:
        logger.error("Error parsing evaluation result; using fallback. Raw content: %s", text)

    return normalize_evaluation(parsed, fill_empty_suggestions=env.FILL_EMPTY_SUGGESTIONS)
