from __future__ import annotations

from typing import Any, Optional

import httpx

from ...errors import AuthError, ProviderUnavailable, QuotaExceeded, StructuralError
from .base import (
    BlockedEnvelope,
    EmptyEnvelope,
    Envelope,
    Prompt,
    ProviderAdapter,
    ProviderResponse,
    TextEnvelope,
    optional_int,
    resolve_envelope,
)

BLOCKING_FINISH_REASONS = {
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
}


class GeminiProvider(ProviderAdapter):
    """Google Gemini provider over the REST generateContent endpoint."""

    name = "gemini"
    tier = "paid"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        temperature: float = 0.3,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate(self, prompt: Prompt, max_output_tokens: int) -> ProviderResponse:
        payload = {
            "systemInstruction": {"parts": [{"text": prompt.system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt.user}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": int(max_output_tokens),
                "candidateCount": 1,
            },
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(f"Gemini timeout after {self.timeout}s", provider=self.name) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Gemini request failed: {exc}", provider=self.name) from exc

        if response.status_code != 200:
            raise self._status_error(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise StructuralError(
                "Gemini returned a non-JSON body",
                provider=self.name,
                model=self.model,
                completed=False,
            ) from exc
        if not isinstance(data, dict):
            raise StructuralError(
                "Gemini returned an unexpected body",
                provider=self.name,
                model=self.model,
                completed=False,
            )

        usage = data.get("usageMetadata")
        if not isinstance(usage, dict):
            usage = {}
        output_tokens = optional_int(usage.get("candidatesTokenCount"))
        thoughts = optional_int(usage.get("thoughtsTokenCount"))
        if output_tokens is not None and thoughts:
            output_tokens += thoughts

        return resolve_envelope(
            self._unwrap(data),
            provider=self.name,
            model=self.model,
            input_tokens=optional_int(usage.get("promptTokenCount")),
            output_tokens=output_tokens,
        )

    @staticmethod
    def _unwrap(data: dict) -> Envelope:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                return BlockedEnvelope(str(block_reason))
            return EmptyEnvelope("no candidates")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            return EmptyEnvelope("malformed candidate")
        finish_reason = str(candidate.get("finishReason") or "")
        if finish_reason in BLOCKING_FINISH_REASONS:
            return BlockedEnvelope(finish_reason)

        text = _candidate_text(candidate)
        if not text:
            return EmptyEnvelope(f"finishReason={finish_reason or 'none'}")
        return TextEnvelope(text, truncated=finish_reason == "MAX_TOKENS")

    def _status_error(self, response: httpx.Response) -> Exception:
        status = response.status_code
        detail = _error_message(response)
        message = f"Gemini API error ({status}): {detail}"
        lowered = detail.lower()
        if status in (401, 403) or "api_key_invalid" in lowered or "api key not valid" in lowered:
            return AuthError(message, provider=self.name)
        if status == 429 and "exceeded your current quota" in lowered:
            return QuotaExceeded(message, provider=self.name)
        return ProviderUnavailable(message, provider=self.name)


def _candidate_text(candidate: dict) -> str:
    content = candidate.get("content")
    if isinstance(content, dict):
        parts = content.get("parts") or []
        return "".join(
            str(part.get("text") or "")
            for part in parts
            if isinstance(part, dict) and not part.get("thought")
        )
    # Older response versions put the text directly on the candidate.
    for key in ("output", "text"):
        value = candidate.get(key)
        if isinstance(value, str):
            return value
    return ""


def _error_message(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            details = " ".join(
                str(item.get("reason") or "")
                for item in error.get("details") or []
                if isinstance(item, dict)
            )
            return f"{error.get('message') or ''} {details}".strip()
    return str(payload)[:500]
