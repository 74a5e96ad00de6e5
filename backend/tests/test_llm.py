import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from helpdesk.errors import CompletionError
from helpdesk.llm import TextCompletion


def _settings(**overrides):
    values = {
        "llm_provider": "openai",
        "llm_model": "gpt-4o",
        "llm_temperature": 0.7,
        "llm_max_tokens": 2000,
        "openai_api_key": "sk-test",
        "google_api_key": "g-test",
        "llm_fallback_provider": None,
        "llm_fallback_model": None,
        "llm_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_openai_completion_returns_content():
    seen = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Restart the router.  "}}]})

    completion = TextCompletion.from_settings(_settings(), transport=httpx.MockTransport(_handler))

    assert asyncio.run(completion.complete("help", max_tokens=50)) == "Restart the router."
    assert seen[0]["model"] == "gpt-4o"
    assert seen[0]["max_tokens"] == 50
    assert seen[0]["temperature"] == 0.7
    assert seen[0]["messages"] == [{"role": "user", "content": "help"}]


def test_falls_back_to_gemini_when_openai_fails():
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.openai.com":
            return httpx.Response(500, json={})
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Check the cable."}]}}]})

    completion = TextCompletion.from_settings(
        _settings(llm_fallback_provider="gemini", llm_fallback_model="gemini-2.0-flash"),
        transport=httpx.MockTransport(_handler),
    )

    assert asyncio.run(completion.complete("help")) == "Check the cable."


def test_all_providers_failing_raises_completion_error():
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})

    completion = TextCompletion.from_settings(_settings(), transport=httpx.MockTransport(_handler))

    with pytest.raises(CompletionError) as excinfo:
        asyncio.run(completion.complete("help"))
    assert "empty_content" in str(excinfo.value)


def test_missing_key_raises_without_network():
    def _handler(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    completion = TextCompletion.from_settings(_settings(openai_api_key=None), transport=httpx.MockTransport(_handler))

    with pytest.raises(CompletionError) as excinfo:
        asyncio.run(completion.complete("help"))
    assert "openai_api_key_missing" in str(excinfo.value)
