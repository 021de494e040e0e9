import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from routegen.config import Settings
from routegen.errors import InferenceError
from routegen.llm import RetryPolicy, StructuredInferenceClient, is_retryable, with_backoff

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("error", response=httpx.Response(status, request=_REQUEST), body=None)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(create: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(openai.RateLimitError, 429), True),
        (_status_error(openai.InternalServerError, 503), True),
        (openai.APITimeoutError(request=_REQUEST), True),
        (openai.APIConnectionError(request=_REQUEST), True),
        (_status_error(openai.BadRequestError, 400), False),
        (_status_error(openai.AuthenticationError, 401), False),
        (httpx.ReadTimeout("slow"), True),
        (httpx.HTTPStatusError("busy", request=_REQUEST, response=httpx.Response(503, request=_REQUEST)), True),
        (httpx.HTTPStatusError("nope", request=_REQUEST, response=httpx.Response(404, request=_REQUEST)), False),
        (ValueError("bad"), False),
    ],
)
def test_is_retryable_classification(exc, expected):
    assert is_retryable(exc) is expected


def test_with_backoff_retries_with_capped_jitter():
    async def run() -> None:
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        fn = AsyncMock(
            side_effect=[
                _status_error(openai.RateLimitError, 429),
                openai.APITimeoutError(request=_REQUEST),
                _status_error(openai.InternalServerError, 503),
                "done",
            ]
        )
        policy = RetryPolicy(max_attempts=6, base_seconds=0.3, cap_seconds=1.0)

        result = await with_backoff(fn, policy, sleep=fake_sleep, rng=lambda: 1.0)

        assert result == "done"
        assert fn.await_count == 4
        # ceilings: 0.3, 0.6, then capped at 1.0
        assert sleeps == pytest.approx([0.3, 0.6, 1.0])

    asyncio.run(run())


def test_with_backoff_gives_up_after_max_attempts():
    async def run() -> None:
        fn = AsyncMock(side_effect=_status_error(openai.RateLimitError, 429))
        policy = RetryPolicy(max_attempts=2)

        with pytest.raises(openai.RateLimitError):
            await with_backoff(fn, policy, sleep=AsyncMock())

        assert fn.await_count == 3

    asyncio.run(run())


def test_with_backoff_does_not_retry_fatal_errors():
    async def run() -> None:
        fn = AsyncMock(side_effect=_status_error(openai.BadRequestError, 400))
        sleep = AsyncMock()

        with pytest.raises(openai.BadRequestError):
            await with_backoff(fn, RetryPolicy(), sleep=sleep)

        assert fn.await_count == 1
        sleep.assert_not_awaited()

    asyncio.run(run())


def test_invoke_sends_strict_schema_and_parses_json():
    async def run() -> None:
        create = AsyncMock(return_value=_completion(json.dumps({"score": 3})))
        inference = StructuredInferenceClient(_client(create), model="gpt-test")
        schema = {"type": "object", "properties": {"score": {"type": "integer"}}, "required": ["score"]}

        result = await inference.invoke("sys", "user", schema, name="emit_score", temperature=0.0, max_tokens=64)

        assert result == {"score": 3}
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["response_format"]["json_schema"] == {"name": "emit_score", "schema": schema, "strict": True}
        assert kwargs["max_tokens"] == 64

    asyncio.run(run())


@pytest.mark.parametrize("content", [None, "", "not json{{", "[1, 2]"])
def test_invoke_rejects_unusable_output(content):
    async def run() -> None:
        inference = StructuredInferenceClient(_client(AsyncMock(return_value=_completion(content))))
        with pytest.raises(InferenceError):
            await inference.invoke("sys", "user", {}, name="emit")

    asyncio.run(run())


def test_from_settings_requires_api_key():
    with pytest.raises(InferenceError):
        StructuredInferenceClient.from_settings(Settings(openai_api_key=None))


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ROUTEGEN_RANKING_STRATEGY", "serial")
    monkeypatch.setenv("ROUTEGEN_DISTANCE_WEIGHT", "150")
    monkeypatch.setenv("ROUTEGEN_RETRY_MAX_ATTEMPTS", "")

    settings = Settings.from_env()

    assert settings.openai_api_key == "sk-test"
    assert settings.ranking_strategy == "serial"
    assert settings.distance_weight == 150.0
    assert settings.retry_max_attempts == 6
    assert RetryPolicy.from_settings(settings).cap_seconds == 8.0


def test_aclose_releases_the_sdk_client():
    async def run() -> None:
        close = AsyncMock()
        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())), close=close)

        await StructuredInferenceClient(client).aclose()
        close.assert_awaited_once()

        # Clients without a close coroutine are left alone.
        await StructuredInferenceClient(_client(AsyncMock())).aclose()

    asyncio.run(run())
