from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional
import logging

from valuation_agent.models import ValuationRequest
from valuation_agent.pipeline_graph import DEFAULT_SELECTOR, evaluate_screenshot, evaluate_web_page

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

api = FastAPI()


class ValuationBody(BaseModel):
    # everything optional so missing fields get our own error messages instead of a 422
    url: Optional[str] = None
    initialRequirements: Optional[str] = None
    html: Optional[str] = None
    selector: Optional[str] = None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _validate(body: ValuationBody) -> Optional[JSONResponse]:
    if not body.url:
        return _error("URL is required", 400)
    if not body.initialRequirements:
        return _error("Initial requirements are required", 400)
    return None


@api.get("/health")
def health():
    return {"status": "ok"}


@api.post("/api/valuation")
async def valuation(body: ValuationBody):
    """
    Evaluate the page at `url` against `initialRequirements`.
    Returns the ValuationResult, or {"error": ...}.
    """
    invalid = _validate(body)
    if invalid:
        return invalid

    request = ValuationRequest(
        url=body.url,
        initial_requirements=body.initialRequirements,
        html=body.html,
        selector=body.selector or DEFAULT_SELECTOR,
    )
    try:
        result = await evaluate_web_page(request)
    except Exception as e:
        logger.exception("Error in valuation API: %s", e)
        return _error(str(e) or "An unknown error occurred", 500)
    return result.model_dump(by_alias=True, exclude_none=True)


@api.post("/api/valuation/screenshot")
async def screenshot_valuation(body: ValuationBody):
    """Same contract as /api/valuation, judged from a screenshot."""
    invalid = _validate(body)
    if invalid:
        return invalid

    request = ValuationRequest(url=body.url, initial_requirements=body.initialRequirements)
    try:
        result = await evaluate_screenshot(request)
    except Exception as e:
        logger.exception("Error in screenshot valuation API: %s", e)
        return _error(str(e) or "An unknown error occurred", 500)
    return result.model_dump(by_alias=True, exclude_none=True)
