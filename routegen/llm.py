# routegen/llm.py
from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
import openai
from openai import AsyncOpenAI

from routegen.config import Settings
from routegen.errors import InferenceError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ROUTEGEN_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

T = TypeVar("T")

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with full jitter.

    Before retry number ``attempt`` (0-based) the caller sleeps a uniformly
    random duration in ``[0, min(cap, base * 2**attempt)]`` seconds.
    """

    max_attempts: int = 6
    base_seconds: float = 0.3
    cap_seconds: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_seconds=settings.retry_base_seconds,
            cap_seconds=settings.retry_cap_seconds,
        )

    def ceiling(self, attempt: int) -> float:
        return min(self.cap_seconds, self.base_seconds * (2 ** attempt))


def is_retryable(exc: BaseException) -> bool:
    """Throttling, timeouts, transient transport errors and 5xx are retryable."""
    if isinstance(
        exc,
        (
            openai.RateLimitError,
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.InternalServerError,
        ),
    ):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code in _RETRYABLE_STATUS
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    return False


async def with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Await ``fn()``; retry retryable failures until ``policy.max_attempts``."""
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.max_attempts:
                raise
            delay = rng() * policy.ceiling(attempt)
            logger.debug(
                "Retryable failure (%s); sleeping %.3fs before retry %d/%d",
                type(exc).__name__,
                delay,
                attempt + 1,
                policy.max_attempts,
            )
            await sleep(delay)
            attempt += 1


class StructuredInferenceClient:
    """Schema-constrained chat completion calls.

    Long-lived callers build one instance and hand it to every agent that
    needs it; ``build_route`` opens its own and closes it with ``aclose``.
    ``client`` is anything exposing the ``AsyncOpenAI``
    ``chat.completions.create`` coroutine.
    """

    def __init__(
        self,
        client: Any,
        *,
        model: str = "gpt-4o-mini",
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._client = client
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> "StructuredInferenceClient":
        if not settings.openai_api_key:
            raise InferenceError("OPENAI_API_KEY not set; structured inference unavailable")
        # The SDK's built-in retries are disabled; RetryPolicy is the only retry layer.
        client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0, timeout=30.0)
        return cls(client, model=settings.model, retry_policy=RetryPolicy.from_settings(settings))

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool, when the client has one."""
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()

    async def invoke(
        self,
        system: str,
        prompt: str,
        schema: Dict[str, Any],
        *,
        name: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
    ) -> Dict[str, Any]:
        """Return the parsed object matching ``schema``.

        Raises ``InferenceError`` when the model returns nothing parseable, and
        re-raises the provider error once retries are exhausted or the failure
        is not retryable.
        """

        async def _call() -> Any:
            return await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": name, "schema": schema, "strict": True},
                },
            )

        resp = await with_backoff(_call, self.retry_policy)

        choices = getattr(resp, "choices", None) or []
        raw = choices[0].message.content if choices else None
        if not raw:
            raise InferenceError(f"{name}: model returned no structured output")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InferenceError(f"{name}: model output was not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise InferenceError(f"{name}: expected a JSON object, got {type(parsed).__name__}")
        return parsed
