from __future__ import annotations

import asyncio
from typing import Any, Optional

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


class AnthropicProvider(ProviderAdapter):
    """Anthropic Messages API provider."""

    name = "anthropic"
    tier = "paid"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5-20251001",
        *,
        temperature: float = 0.3,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(model)
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                import anthropic
            except Exception as exc:  # pragma: no cover
                raise RuntimeError(
                    "Install `anthropic` package to use Anthropic provider"
                ) from exc
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)
        return self._client

    async def generate(self, prompt: Prompt, max_output_tokens: int) -> ProviderResponse:
        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    system=prompt.system,
                    messages=[{"role": "user", "content": prompt.user}],
                    max_tokens=max_output_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(f"Anthropic timeout after {self.timeout}s", provider=self.name) from exc
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
            input_tokens=optional_int(field_of(usage, "input_tokens")),
            output_tokens=optional_int(field_of(usage, "output_tokens")),
        )

    @staticmethod
    def _unwrap(response: Any) -> Envelope:
        stop_reason = field_of(response, "stop_reason") or ""
        if stop_reason == "refusal":
            return BlockedEnvelope("refusal")

        # content is a list of blocks; only text blocks carry the answer.
        blocks = field_of(response, "content") or []
        if isinstance(blocks, str):
            text = blocks
        else:
            text = "".join(
                str(field_of(block, "text") or "")
                for block in blocks
                if field_of(block, "type", "text") == "text"
            )
        if not text:
            return EmptyEnvelope(f"stop_reason={stop_reason or 'none'}")
        return TextEnvelope(text, truncated=stop_reason == "max_tokens")

    def _map_error(self, exc: Exception) -> Optional[Exception]:
        import anthropic

        if isinstance(exc, anthropic.APIStatusError):
            status = exc.status_code
            message = f"Anthropic API error ({status}): {exc}"
            if status in (401, 403):
                return AuthError(message, provider=self.name)
            if status in (400, 402) and "credit balance" in str(exc).lower():
                return QuotaExceeded(message, provider=self.name)
            return ProviderUnavailable(message, provider=self.name)
        if isinstance(exc, anthropic.APIConnectionError):
            return ProviderUnavailable(f"Anthropic connection failed: {exc}", provider=self.name)
        return None
