"""
LangGraph pipelines for page valuation.

Two graphs share the judge node:
- dom:        acquire -> digest -> judge
- screenshot: capture -> judge

Run via:
    from valuation_agent.pipeline_graph import evaluate_web_page
    result = await evaluate_web_page(ValuationRequest(url=..., initial_requirements=...))
"""

from __future__ import annotations
import logging
from typing import Any, Optional, TypedDict

from langgraph.graph import StateGraph, END

from valuation_agent.agents.acquire import AcquisitionError, fetch_html
from valuation_agent.agents.digest import extract_key_info
from valuation_agent.agents.judge import judge
from valuation_agent.config import Config, cfg
from valuation_agent.models import EvaluationResult, ScreenshotOptions, ValuationRequest, ValuationResult
from valuation_agent.services.screenshot_client import CaptureError, capture_screenshot, to_data_url

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_SELECTOR = "preview"
SCREENSHOT_MIME_TYPE = "image/jpeg"


class EvaluationError(Exception):
    """Content for the evaluation could not be obtained."""


class ValuationState(TypedDict, total=False):
    request: ValuationRequest
    env: Config
    streamer: Any
    html: str
    content: str
    kind: str
    screenshot: str
    evaluation: EvaluationResult


async def node_acquire(state: ValuationState) -> ValuationState:
    request = state["request"]
    if request.html:
        logger.info("[acquire] using supplied html for %s", request.url)
        return {"html": request.html}
    logger.info("[acquire] url=%s selector=%s", request.url, request.selector or DEFAULT_SELECTOR)
    try:
        html = await fetch_html(request.url, request.selector or DEFAULT_SELECTOR, env=state.get("env"))
    except AcquisitionError as e:
        logger.error("Error in web page evaluation: %s", e)
        raise EvaluationError(str(e)) from e
    return {"html": html}


async def node_digest(state: ValuationState) -> ValuationState:
    digest = extract_key_info(state["html"])
    logger.info("[digest] %d characters", len(digest))
    return {"content": digest, "kind": "dom"}


async def node_capture(state: ValuationState) -> ValuationState:
    request = state["request"]
    logger.info("[capture] url=%s", request.url)
    options = ScreenshotOptions(
        url=request.url,
        format="jpg",
        block_ads=True,
        block_cookie_banners=True,
        block_trackers=True,
        image_quality=80,
        full_page=False,
    )
    try:
        image = await capture_screenshot(options, env=state.get("env"))
    except CaptureError as e:
        logger.error("Error in screenshot evaluation: %s", e)
        raise EvaluationError(str(e)) from e
    data_url = to_data_url(image, SCREENSHOT_MIME_TYPE)
    return {"content": data_url, "kind": "screenshot", "screenshot": data_url}


async def node_judge(state: ValuationState) -> ValuationState:
    logger.info("[judge] kind=%s", state.get("kind"))
    evaluation = await judge(
        state["request"].initial_requirements,
        state["content"],
        kind=state.get("kind", "dom"),
        env=state.get("env"),
        streamer=state.get("streamer"),
    )
    logger.info("[judge] matchScore=%s", evaluation.match_score)
    return {"evaluation": evaluation}


dom_graph = StateGraph(ValuationState)
dom_graph.add_node("acquire", node_acquire)
dom_graph.add_node("digest", node_digest)
dom_graph.add_node("judge", node_judge)
dom_graph.set_entry_point("acquire")
dom_graph.add_edge("acquire", "digest")
dom_graph.add_edge("digest", "judge")
dom_graph.add_edge("judge", END)

dom_pipeline = dom_graph.compile()


screenshot_graph = StateGraph(ValuationState)
screenshot_graph.add_node("capture", node_capture)
screenshot_graph.add_node("judge", node_judge)
screenshot_graph.set_entry_point("capture")
screenshot_graph.add_edge("capture", "judge")
screenshot_graph.add_edge("judge", END)

screenshot_pipeline = screenshot_graph.compile()


def _init_state(request: ValuationRequest, env: Optional[Config], streamer: Any) -> ValuationState:
    return {"request": request, "env": env or cfg, "streamer": streamer}


async def evaluate_web_page(request: ValuationRequest,
                            env: Optional[Config] = None,
                            streamer: Any = None) -> ValuationResult:
    """
    Evaluate the page at request.url (or request.html) against the requirements.
    Raises EvaluationError only when the page content cannot be acquired.
    """
    final_state = await dom_pipeline.ainvoke(_init_state(request, env, streamer))
    return ValuationResult(url=request.url, evaluation=final_state["evaluation"])


async def evaluate_screenshot(request: ValuationRequest,
                              env: Optional[Config] = None,
                              streamer: Any = None) -> ValuationResult:
    """
    Evaluate a screenshot of request.url against the requirements.
    Raises EvaluationError when the screenshot service fails.
    """
    final_state = await screenshot_pipeline.ainvoke(_init_state(request, env, streamer))
    return ValuationResult(screenshot=final_state["screenshot"], evaluation=final_state["evaluation"])
