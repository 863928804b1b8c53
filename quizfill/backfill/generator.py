"""Question generator: one LLM call with retry/backoff, parsed into raw question dicts.

Rate-limit failures (HTTP 429 / RESOURCE_EXHAUSTED) and other failures draw
on separate retry budgets taken from the plan. The generator never raises:
exhausted retries come back as ``GenerationResult(success=False)``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable

from tenacity import RetryCallState, Retrying, before_sleep_log, retry_if_exception_type

from quizfill.backfill.errors import GenerationError
from quizfill.llm.base import LLMProvider
from quizfill.schemas.generation import GenerationOptions, GenerationResult

logger = logging.getLogger(__name__)

RETRY_DELAYS_SECONDS = (2.0, 4.0)


def is_rate_limit_error(exc: BaseException | None) -> bool:
    if exc is None:
        return False
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    message = str(exc)
    return "429" in message or "RESOURCE_EXHAUSTED" in message


def _strip_code_fence(raw: str) -> str:
    s = raw.strip()
    if s.startswith("```"):
        s = re.sub(r"^```\w*\n?", "", s)
        s = re.sub(r"\n?```\s*$", "", s)
    return s.strip()


def parse_questions_payload(raw: str) -> list[dict[str, Any]]:
    """Extract the ``questions`` array from a model response; GenerationError if absent."""
    data = json.loads(_strip_code_fence(raw))
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise GenerationError("Response did not contain a questions array")
    return [item for item in data if isinstance(item, dict)]


class _RetryBudget:
    """Tenacity stop/wait callbacks sharing per-call failure counters."""

    def __init__(self, options: GenerationOptions, delays: tuple[float, ...]):
        self._options = options
        self._delays = delays
        self.rate_limited = 0
        self.failed = 0
        self._counted_attempt = 0

    def _record(self, retry_state: RetryCallState) -> bool:
        """Count the latest failed attempt once; tenacity may call wait or stop first."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        limited = is_rate_limit_error(exc)
        if retry_state.attempt_number > self._counted_attempt:
            self._counted_attempt = retry_state.attempt_number
            if limited:
                self.rate_limited += 1
            else:
                self.failed += 1
        return limited

    def stop(self, retry_state: RetryCallState) -> bool:
        if retry_state.seconds_since_start is not None and retry_state.seconds_since_start >= self._options.timeout_seconds:
            return True
        if self._record(retry_state):
            return self.rate_limited > self._options.rate_limit_max_retries
        return self.failed > self._options.retries

    def wait(self, retry_state: RetryCallState) -> float:
        if self._record(retry_state):
            return self._options.rate_limit_retry_delay_ms / 1000
        if not self._delays:
            return 0.0
        return self._delays[min(self.failed, len(self._delays)) - 1]


class QuestionGenerator:
    """Calls an ``LLMProvider`` for a batch of questions."""

    def __init__(
        self,
        provider: LLMProvider,
        retry_delays: tuple[float, ...] = RETRY_DELAYS_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._provider = provider
        self._retry_delays = retry_delays
        self._sleep = sleep

    @property
    def model(self) -> str:
        return getattr(self._provider, "model", "") or ""

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        budget = _RetryBudget(options, self._retry_delays)
        retrying = Retrying(
            retry=retry_if_exception_type(Exception),
            stop=budget.stop,
            wait=budget.wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            questions = retrying(self._call_once, system_prompt, user_prompt, options)
        except Exception as e:
            logger.error(
                "Question generation failed (model=%s, failures=%d, rate_limited=%d): %s",
                self.model, budget.failed, budget.rate_limited, e,
            )
            return GenerationResult(success=False, error=str(e)[:300] or "Question generation failed", model=self.model)
        return GenerationResult(success=True, questions=questions, model=self.model)

    def _call_once(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> list[dict[str, Any]]:
        raw = self._provider.complete(
            user_prompt,
            system=system_prompt,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout=options.timeout_seconds,
            json_mode=True,
        )
        return parse_questions_payload(raw)
