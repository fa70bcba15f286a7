"""
Auto-evaluation controller.

Owns the user-session state of the valuation loop (mode, running flag, history,
current result) and relays every outcome to the chat collaborator:

- manual mode: one evaluation per run_manual_evaluation() call
- auto mode: evaluate immediately, then every `interval` seconds until stopped
  or until a run reaches the match threshold

The hosting page is reached only through two injected capabilities:
EnvironmentContext (current address, same-origin broadcast) and
ChatSessionHandle (mark the chat started, reveal it).

State-changing methods must be called from inside the running event loop,
since entering auto mode schedules the polling task.
"""

from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from valuation_agent.agents.acquire import is_preview_url
from valuation_agent.config import Config, cfg
from valuation_agent.models import ValuationHistoryItem, ValuationMessage, ValuationRequest, ValuationResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MANUAL = "manual"
AUTO = "auto"

Evaluator = Callable[[ValuationRequest], Awaitable[ValuationResult]]


class EnvironmentContext(Protocol):
    def current_address(self) -> str: ...

    def broadcast(self, message: ValuationMessage) -> None: ...


class ChatSessionHandle(Protocol):
    def mark_started(self) -> None: ...

    def show_chat(self) -> None: ...


def _fmt_score(score: float) -> str:
    return f"{score:g}"


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {s}" for s in items)


def success_messages(score: float, analysis: str) -> List[ValuationMessage]:
    s = _fmt_score(score)
    summary = (
        f"## ✅ Requirements Matched ({s}%)\n\n"
        f"{analysis}\n\n"
        "**The current implementation successfully meets the requirements.**"
    )
    follow_up = (
        f"The website now meets the requirements with a match score of {s}%. "
        "Can you explain what makes it successful?"
    )
    return [
        ValuationMessage(type="VALUATION_SUCCESS", content=summary),
        ValuationMessage(type="TRIGGER_CHAT", content=follow_up),
    ]


def suggestion_messages(score: float, analysis: str, suggestions: List[str]) -> List[ValuationMessage]:
    s = _fmt_score(score)
    summary = (
        f"## 🔄 Requirements Partially Met ({s}%)\n\n"
        f"{analysis}\n\n"
        "### Suggested Improvements:\n"
        f"{_bullets(suggestions)}"
    )
    follow_up = (
        f"The website currently has a match score of {s}%. "
        f"Can you help implement these improvements: {', '.join(suggestions)}?"
    )
    return [
        ValuationMessage(type="VALUATION_SUGGESTIONS", content=summary),
        ValuationMessage(type="TRIGGER_CHAT", content=follow_up),
    ]


class ValuationController:

    def __init__(self,
                 context: EnvironmentContext,
                 chat: ChatSessionHandle,
                 evaluator: Optional[Evaluator] = None,
                 initial_url: str = "",
                 initial_requirements: str = "",
                 auto_start: bool = False,
                 threshold: Optional[float] = None,
                 interval: Optional[float] = None,
                 allow_overlap: Optional[bool] = None,
                 env: Optional[Config] = None):
        env = env or cfg
        if evaluator is None:
            from valuation_agent.services.valuation_client import ValuationApiClient
            evaluator = ValuationApiClient(env=env)

        self.context = context
        self.chat = chat
        self.evaluator = evaluator
        self.auto_start = auto_start
        self.threshold = env.MATCH_THRESHOLD if threshold is None else threshold
        self.interval = env.AUTO_INTERVAL_SECONDS if interval is None else interval
        self.allow_overlap = env.ALLOW_OVERLAPPING_RUNS if allow_overlap is None else allow_overlap

        self.url: str = initial_url or context.current_address()
        self.requirements: str = initial_requirements
        self.mode: str = MANUAL
        self.running: bool = False
        self.history: List[ValuationHistoryItem] = []
        self.current_result: Optional[ValuationResult] = None
        self.error: str = ""
        self.detected_preview_url: str = ""

        self._active_runs = 0
        self._auto_started = False
        self._ticker: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def is_loading(self) -> bool:
        return self._active_runs > 0

    # -- evaluation --

    async def evaluate_preview(self) -> Optional[ValuationResult]:
        """Run one evaluation of the tracked URL. Errors are stored, not raised."""
        if not self.url or not self.requirements:
            self.error = "URL and requirements are required"
            return None

        request = ValuationRequest(url=self.url, initial_requirements=self.requirements)
        self._active_runs += 1
        self.error = ""
        logger.info("Waiting for preview to be fully generated... (%s)", request.url)
        try:
            result = await self.evaluator(request)
        except Exception as e:
            self.error = str(e) or "An unknown error occurred"
            logger.error("Evaluation of %s failed: %s", request.url, self.error)
            return None
        finally:
            self._active_runs -= 1

        self.current_result = result
        self.handle_evaluation_results(result)
        if result.evaluation.match_score >= self.threshold:
            self._set_running(False)
        self.history.append(ValuationHistoryItem(timestamp=datetime.now(), result=result))
        return result

    async def run_manual_evaluation(self) -> Optional[ValuationResult]:
        return await self.evaluate_preview()

    def handle_evaluation_results(self, result: ValuationResult) -> None:
        evaluation = result.evaluation
        score = evaluation.match_score
        try:
            self.chat.mark_started()
            self.chat.show_chat()

            if score >= self.threshold:
                messages = success_messages(score, evaluation.analysis)
                logger.info("Requirements matched with score: %s%%", _fmt_score(score))
            else:
                messages = suggestion_messages(score, evaluation.analysis, evaluation.suggestions)
                logger.info("Improvement suggestions added (match: %s%%)", _fmt_score(score))

            for message in messages:
                self.context.broadcast(message)
        except Exception as e:
            logger.exception("Error handling evaluation results: %s", e)
            self.error = "Failed to process evaluation results"

    def send_suggestions_to_chat(self, suggestions: List[str]) -> None:
        if not suggestions:
            return
        try:
            self.chat.mark_started()
            self.chat.show_chat()
            self.context.broadcast(ValuationMessage(
                type="VALUATION_SUGGESTIONS",
                content=f"## Valuation Agent Suggestions\n\n{_bullets(suggestions)}",
            ))
            logger.info("Valuation suggestions added to chat")
        except Exception as e:
            logger.exception("Error sending suggestions to chat: %s", e)
            self.error = "Failed to send suggestions to chat"

    def select_history(self, index: int) -> ValuationResult:
        self.current_result = self.history[index].result
        return self.current_result

    # -- mode / inputs --

    def start_auto_mode(self) -> None:
        self.mode = AUTO
        self.running = True
        self._restart_auto_loop()

    def stop_auto_mode(self) -> None:
        self._set_running(False)

    def set_mode(self, mode: str) -> None:
        if mode not in (MANUAL, AUTO):
            raise ValueError(f"Unknown mode: {mode}")
        if mode != self.mode:
            self.mode = mode
            self._restart_auto_loop()

    def set_url(self, url: str) -> None:
        if url != self.url:
            self.url = url
            self._restart_auto_loop()
        self._maybe_auto_start()

    def set_requirements(self, requirements: str) -> None:
        self.requirements = requirements
        self._maybe_auto_start()

    def refresh(self) -> None:
        """
        Re-read the hosting page: adopt a preview address that differs from the
        tracked URL, then start auto mode if it was requested and is now possible.
        """
        current = self.context.current_address()
        if current and current != self.url and is_preview_url(current):
            logger.info("Detected preview URL: %s", current)
            self.detected_preview_url = current
            self.set_url(current)
            return
        self._maybe_auto_start()

    def _maybe_auto_start(self) -> None:
        if not self.auto_start or self._auto_started:
            return
        if self.url and self.requirements and self.current_result is None:
            logger.info("Auto-starting evaluation with URL: %s", self.url)
            self._auto_started = True
            self.start_auto_mode()

    def _set_running(self, running: bool) -> None:
        if running != self.running:
            self.running = running
            self._restart_auto_loop()

    # -- auto loop --

    def _restart_auto_loop(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self.mode == AUTO and self.running:
            self._ticker = asyncio.get_running_loop().create_task(self._auto_loop())

    async def _auto_loop(self) -> None:
        while self.mode == AUTO and self.running:
            self._fire()
            await asyncio.sleep(self.interval)

    def _fire(self) -> Optional[asyncio.Task]:
        if (self._pending or self.is_loading) and not self.allow_overlap:
            logger.info("Previous evaluation still in flight; skipping tick")
            return None
        task = asyncio.get_running_loop().create_task(self.evaluate_preview())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_for_pending(self) -> None:
        """Wait for every evaluation started by the auto loop to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        """Tear down the auto loop. In-flight evaluations are left to finish."""
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass
