# valuation_agent/services/valuation_client.py
"""
HTTP client for the valuation API.

ValuationApiClient is the controller's default evaluator: an async callable
that POSTs a ValuationRequest to /api/valuation and returns the ValuationResult.
"""
from __future__ import annotations
import logging
from typing import Optional

import httpx

from valuation_agent.config import Config, cfg
from valuation_agent.models import ValuationRequest, ValuationResult
from valuation_agent.pipeline_graph import DEFAULT_SELECTOR, EvaluationError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class ValuationApiClient:

    def __init__(self,
                 base_url: Optional[str] = None,
                 endpoint: str = "/api/valuation",
                 selector: str = DEFAULT_SELECTOR,
                 env: Optional[Config] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        env = env or cfg
        self.base_url = base_url or env.VALUATION_API_URL
        self.endpoint = endpoint
        self.selector = selector
        # the model call happens server-side, so there is no client timeout
        self._client_kwargs = {"base_url": self.base_url, "timeout": None, "transport": transport}

    async def __call__(self, request: ValuationRequest) -> ValuationResult:
        payload = request.model_dump(by_alias=True, exclude_none=True)
        payload.setdefault("selector", self.selector)

        async with httpx.AsyncClient(**self._client_kwargs) as client:
            try:
                resp = await client.post(self.endpoint, json=payload)
            except httpx.HTTPError as e:
                raise EvaluationError(f"Valuation API unreachable: {e}") from e

        if not resp.is_success:
            message = "Failed to evaluate page"
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                message = str(body["error"])
            raise EvaluationError(message)

        return ValuationResult.model_validate(resp.json())
