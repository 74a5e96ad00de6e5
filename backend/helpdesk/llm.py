from __future__ import annotations

import logging
from typing import Protocol

import httpx

from helpdesk.errors import CompletionError

logger = logging.getLogger(__name__)

OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_GENERATE_CONTENT_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"


class TextCompleter(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


class TextCompletion:
    """Prompt in, text out, against OpenAI with an optional second provider."""

    def __init__(
        self,
        *,
        provider: str = "openai",
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        openai_api_key: str | None = None,
        google_api_key: str | None = None,
        fallback_provider: str | None = None,
        fallback_model: str | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = (provider or "openai").strip().lower()
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.openai_api_key = openai_api_key
        self.google_api_key = google_api_key
        self.fallback_provider = (fallback_provider or "").strip().lower() or None
        self.fallback_model = (fallback_model or "").strip() or None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport: httpx.AsyncBaseTransport | None = None) -> "TextCompletion":
        return cls(
            provider=settings.llm_provider,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            openai_api_key=settings.openai_api_key,
            google_api_key=settings.google_api_key,
            fallback_provider=settings.llm_fallback_provider,
            fallback_model=settings.llm_fallback_model,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )

    def _attempts(self, model: str | None) -> list[tuple[str, str]]:
        attempts = [(self.provider, model or self.model)]
        if self.fallback_provider and self.fallback_model:
            fallback = (self.fallback_provider, self.fallback_model)
            if fallback not in attempts:
                attempts.append(fallback)
        return attempts

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        effective_temperature = self.temperature if temperature is None else temperature
        effective_max_tokens = self.max_tokens if max_tokens is None else max_tokens
        errors: list[str] = []
        for provider, provider_model in self._attempts(model):
            text, err = await self._request(
                provider=provider,
                model=provider_model,
                prompt=prompt,
                temperature=effective_temperature,
                max_tokens=effective_max_tokens,
            )
            if err:
                logger.warning("llm_completion failed provider=%s model=%s error=%s", provider, provider_model, err)
                errors.append(f"{provider}:{err}")
                continue
            return text
        raise CompletionError("|".join(errors) if errors else "llm_unknown_error")

    async def _request(
        self,
        *,
        provider: str,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> tuple[str, str | None]:
        if provider == "openai":
            if not self.openai_api_key:
                return "", "openai_api_key_missing"
            request_payload = {
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            }
            headers = {"Authorization": f"Bearer {self.openai_api_key}", "Content-Type": "application/json"}
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(OPENAI_CHAT_COMPLETIONS_URL, headers=headers, json=request_payload)
                if response.status_code >= 400:
                    return "", f"http_{response.status_code}"
                data = response.json()
                content = ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or ""
                content = content.strip()
                if not content:
                    return "", "empty_content"
                return content, None
            except (httpx.HTTPError, ValueError) as exc:
                return "", f"error:{exc.__class__.__name__}"

        if provider == "gemini":
            if not self.google_api_key:
                return "", "google_api_key_missing"
            url = GEMINI_GENERATE_CONTENT_URL.format(model=model, api_key=self.google_api_key)
            request_payload = {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
            }
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(url, json=request_payload, headers={"Content-Type": "application/json"})
                if response.status_code >= 400:
                    return "", f"http_{response.status_code}"
                data = response.json()
                parts = (
                    (data.get("candidates") or [{}])[0]
                    .get("content", {})
                    .get("parts", [])
                )
                content = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
                if not content:
                    return "", "empty_content"
                return content, None
            except (httpx.HTTPError, ValueError) as exc:
                return "", f"error:{exc.__class__.__name__}"

        return "", "unsupported_provider"
