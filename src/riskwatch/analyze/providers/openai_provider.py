from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from ...errors import AuthError, ProviderUnavailable, QuotaExceeded
from .base import (
    BlockedEnvelope,
    EmptyEnvelope,
    Envelope,
    Prompt,
    ProviderAdapter,
    ProviderResponse,
    TextEnvelope,
    field_of,
    optional_int,
    resolve_envelope,
)


class OpenAIProvider(ProviderAdapter):
    """OpenAI Chat Completions provider."""

    name = "openai"
    tier = "paid"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        temperature: float = 0.3,
        timeout: float = 60.0,
        client_getter: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__(model)
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout
        self._client_getter = client_getter
        self._client = None

    @property
    def client(self):
        if self._client_getter is not None:
            return self._client_getter()
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def generate(self, prompt: Prompt, max_output_tokens: int) -> ProviderResponse:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": prompt.system},
                        {"role": "user", "content": prompt.user},
                    ],
                    max_tokens=max_output_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(f"OpenAI timeout after {self.timeout}s", provider=self.name) from exc
        except Exception as exc:
            mapped = self._map_error(exc)
            if mapped is None:
                raise
            raise mapped from exc

        usage = field_of(response, "usage")
        return resolve_envelope(
            self._unwrap(response),
            provider=self.name,
            model=self.model,
            input_tokens=optional_int(field_of(usage, "prompt_tokens")),
            output_tokens=optional_int(field_of(usage, "completion_tokens")),
        )

    @staticmethod
    def _unwrap(response: Any) -> Envelope:
        choices = field_of(response, "choices") or []
        if not choices:
            return EmptyEnvelope("no choices")
        choice = choices[0]
        finish_reason = field_of(choice, "finish_reason") or ""
        message = field_of(choice, "message")

        refusal = field_of(message, "refusal")
        if refusal:
            return BlockedEnvelope(str(refusal))
        if finish_reason == "content_filter":
            return BlockedEnvelope("content_filter")

        content = field_of(message, "content")
        if isinstance(content, list):
            # Content-part arrays from newer API versions and compatible servers.
            content = "".join(
                str(field_of(part, "text") or "")
                for part in content
                if field_of(part, "type", "text") in ("text", "output_text")
            )
        if not content:
            return EmptyEnvelope(f"finish_reason={finish_reason or 'none'}")
        return TextEnvelope(str(content), truncated=finish_reason == "length")

    def _map_error(self, exc: Exception) -> Optional[Exception]:
        import openai

        if isinstance(exc, openai.APIStatusError):
            status = exc.status_code
            message = f"OpenAI API error ({status}): {exc}"
            if status in (401, 403):
                return AuthError(message, provider=self.name)
            if status == 429 and getattr(exc, "code", None) == "insufficient_quota":
                return QuotaExceeded(message, provider=self.name)
            return ProviderUnavailable(message, provider=self.name)
        if isinstance(exc, openai.APIConnectionError):
            return ProviderUnavailable(f"OpenAI connection failed: {exc}", provider=self.name)
        return None
