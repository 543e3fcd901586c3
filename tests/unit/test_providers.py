from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest

from riskwatch.analyze.prompts import PromptBuilder
from riskwatch.analyze.providers import (
    AnthropicProvider,
    GeminiProvider,
    OfflineProvider,
    OpenAIProvider,
    detect_provider_from_model,
)
from riskwatch.errors import AuthError, ProviderUnavailable, QuotaExceeded, StructuralError
from riskwatch.models import AnalysisKind, AnalysisRequest, News


def _prompt(kind: AnalysisKind = AnalysisKind.RISK, evidence=()):
    return PromptBuilder().build(AnalysisRequest("ACME", tuple(evidence), kind))


def _openai_completion(content, finish_reason="stop", refusal=None, usage=True):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                finish_reason=finish_reason,
                message=SimpleNamespace(content=content, refusal=refusal),
            )
        ],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30) if usage else None,
    )


def _openai_provider(create: AsyncMock) -> OpenAIProvider:
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return OpenAIProvider(api_key="sk-test", model="gpt-4o-mini", client_getter=lambda: fake_client)


def _http_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://api.example.com/v1"))


# OpenAI


@pytest.mark.anyio
async def test_openai_provider_calls_chat_completions() -> None:
    create = AsyncMock(return_value=_openai_completion('{"isHighRisk": false}'))
    provider = _openai_provider(create)
    prompt = _prompt()

    out = await provider.generate(prompt, 256)

    create.assert_awaited_once()
    kwargs = create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["max_tokens"] == 256
    assert kwargs["messages"] == [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": prompt.user},
    ]
    assert out.text == '{"isHighRisk": false}'
    assert out.input_tokens == 120
    assert out.output_tokens == 30
    assert out.truncated is False


@pytest.mark.anyio
async def test_openai_length_finish_is_partial_text() -> None:
    provider = _openai_provider(AsyncMock(return_value=_openai_completion('{"summary": "cut', finish_reason="length")))
    out = await provider.generate(_prompt(), 64)
    assert out.truncated is True
    assert out.text.startswith('{"summary"')


@pytest.mark.anyio
async def test_openai_content_parts_are_joined() -> None:
    parts = [{"type": "text", "text": "{\"a\": "}, {"type": "text", "text": "1}"}]
    provider = _openai_provider(AsyncMock(return_value=_openai_completion(parts)))
    out = await provider.generate(_prompt(), 64)
    assert out.text == '{"a": 1}'


@pytest.mark.anyio
@pytest.mark.parametrize(
    "completion",
    [
        _openai_completion(None, refusal="I can't help with that"),
        _openai_completion("", finish_reason="content_filter"),
        _openai_completion(None),
        SimpleNamespace(choices=[], usage=None),
    ],
)
async def test_openai_unusable_envelopes_raise_structural_error(completion) -> None:
    provider = _openai_provider(AsyncMock(return_value=completion))
    with pytest.raises(StructuralError) as excinfo:
        await provider.generate(_prompt(), 64)
    assert excinfo.value.provider == "openai"
    assert excinfo.value.completed is True


@pytest.mark.anyio
async def test_openai_structural_error_carries_usage() -> None:
    provider = _openai_provider(AsyncMock(return_value=_openai_completion(None, refusal="no")))
    with pytest.raises(StructuralError) as excinfo:
        await provider.generate(_prompt(), 64)
    assert excinfo.value.input_tokens == 120
    assert excinfo.value.output_tokens == 30


@pytest.mark.anyio
async def test_openai_error_mapping() -> None:
    auth = openai.AuthenticationError("bad key", response=_http_response(401), body=None)
    quota = openai.RateLimitError(
        "quota", response=_http_response(429), body={"code": "insufficient_quota", "message": "quota"}
    )
    throttled = openai.RateLimitError("slow down", response=_http_response(429), body=None)
    server = openai.InternalServerError("boom", response=_http_response(500), body=None)

    for exc, expected in ((auth, AuthError), (quota, QuotaExceeded), (throttled, ProviderUnavailable), (server, ProviderUnavailable)):
        provider = _openai_provider(AsyncMock(side_effect=exc))
        with pytest.raises(expected):
            await provider.generate(_prompt(), 64)


# Anthropic


def _anthropic_provider(create: AsyncMock) -> AnthropicProvider:
    provider = AnthropicProvider(api_key="anthropic-key", model="claude-haiku-4-5-20251001")
    provider._client = SimpleNamespace(messages=SimpleNamespace(create=create))
    return provider


@pytest.mark.anyio
async def test_anthropic_provider_calls_messages_create() -> None:
    create = AsyncMock(
        return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="thinking", text=None),
                SimpleNamespace(type="text", text="ok"),
            ],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=10, output_tokens=4),
        )
    )
    provider = _anthropic_provider(create)
    prompt = _prompt()

    out = await provider.generate(prompt, 321)

    kwargs = create.call_args.kwargs
    assert kwargs["model"] == "claude-haiku-4-5-20251001"
    assert kwargs["system"] == prompt.system
    assert kwargs["max_tokens"] == 321
    assert kwargs["messages"] == [{"role": "user", "content": prompt.user}]
    assert out.text == "ok"
    assert (out.input_tokens, out.output_tokens) == (10, 4)


@pytest.mark.anyio
async def test_anthropic_refusal_is_structural() -> None:
    create = AsyncMock(
        return_value=SimpleNamespace(content=[], stop_reason="refusal", usage=SimpleNamespace(input_tokens=9, output_tokens=0))
    )
    with pytest.raises(StructuralError):
        await _anthropic_provider(create).generate(_prompt(), 64)


@pytest.mark.anyio
async def test_anthropic_max_tokens_is_truncated_text() -> None:
    create = AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"isHighRisk": tr')],
            stop_reason="max_tokens",
            usage=None,
        )
    )
    out = await _anthropic_provider(create).generate(_prompt(), 64)
    assert out.truncated is True
    assert out.input_tokens is None


@pytest.mark.anyio
async def test_anthropic_error_mapping() -> None:
    auth = anthropic.AuthenticationError("invalid x-api-key", response=_http_response(401), body=None)
    credit = anthropic.BadRequestError(
        "Your credit balance is too low to access the Anthropic API", response=_http_response(400), body=None
    )
    overloaded = anthropic.InternalServerError("overloaded", response=_http_response(529), body=None)

    for exc, expected in ((auth, AuthError), (credit, QuotaExceeded), (overloaded, ProviderUnavailable)):
        with pytest.raises(expected):
            await _anthropic_provider(AsyncMock(side_effect=exc)).generate(_prompt(), 64)


# Gemini


def _gemini(handler) -> GeminiProvider:
    return GeminiProvider(
        api_key="g-key",
        model="gemini-2.5-flash",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_gemini_posts_generate_content() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"parts": [{"text": "thinking...", "thought": True}, {"text": "{\"a\": 1}"}]},
                        "finishReason": "STOP",
                    }
                ],
                "usageMetadata": {"promptTokenCount": 50, "candidatesTokenCount": 10, "thoughtsTokenCount": 5},
            },
        )

    prompt = _prompt()
    out = await _gemini(handler).generate(prompt, 512)

    assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.5-flash:generateContent"
    assert seen["key"] == "g-key"
    assert seen["body"]["generationConfig"]["maxOutputTokens"] == 512
    assert seen["body"]["systemInstruction"]["parts"][0]["text"] == prompt.system
    assert out.text == '{"a": 1}'
    assert out.input_tokens == 50
    assert out.output_tokens == 15


@pytest.mark.anyio
async def test_gemini_legacy_output_field_is_read() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"output": "legacy text"}]})

    out = await _gemini(handler).generate(_prompt(), 64)
    assert out.text == "legacy text"
    assert out.input_tokens is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"promptFeedback": {"blockReason": "SAFETY"}, "usageMetadata": {"promptTokenCount": 12}},
        {"candidates": [{"finishReason": "SAFETY", "content": {"parts": [{"text": "partial"}]}}]},
        {"candidates": [{"finishReason": "STOP", "content": {"parts": []}}]},
        {"candidates": []},
        {"candidates": ["unexpected"], "usageMetadata": {"promptTokenCount": 12}},
        {"candidates": {"text": "not a list"}},
        {"candidates": [None], "promptFeedback": "SAFETY"},
    ],
)
async def test_gemini_unusable_envelopes_raise_structural_error(body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(StructuralError) as excinfo:
        await _gemini(handler).generate(_prompt(), 64)
    assert excinfo.value.completed is True


@pytest.mark.anyio
async def test_gemini_undecodable_body_is_not_billed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy error</html>")

    with pytest.raises(StructuralError) as excinfo:
        await _gemini(handler).generate(_prompt(), 64)
    assert excinfo.value.completed is False


@pytest.mark.anyio
async def test_gemini_malformed_usage_is_ignored() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}], "usageMetadata": "n/a"},
        )

    out = await _gemini(handler).generate(_prompt(), 64)
    assert out.text == "ok"
    assert out.input_tokens is None
    assert out.output_tokens is None


@pytest.mark.anyio
async def test_gemini_malformed_candidate_keeps_usage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [["text"]], "usageMetadata": {"promptTokenCount": 30}})

    with pytest.raises(StructuralError) as excinfo:
        await _gemini(handler).generate(_prompt(), 64)
    assert excinfo.value.completed is True
    assert excinfo.value.input_tokens == 30


@pytest.mark.anyio
@pytest.mark.parametrize(
    "status, message, expected",
    [
        (400, "API key not valid. Please pass a valid API key.", AuthError),
        (403, "Permission denied", AuthError),
        (429, "You exceeded your current quota, please check your plan", QuotaExceeded),
        (429, "Resource has been exhausted (e.g. check quota).", ProviderUnavailable),
        (503, "The model is overloaded", ProviderUnavailable),
    ],
)
async def test_gemini_status_mapping(status, message, expected) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": status, "message": message}})

    with pytest.raises(expected):
        await _gemini(handler).generate(_prompt(), 64)


@pytest.mark.anyio
async def test_gemini_transport_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderUnavailable):
        await _gemini(handler).generate(_prompt(), 64)


# Offline


@pytest.mark.anyio
async def test_offline_risk_flags_critical_keywords(sample_news) -> None:
    out = await OfflineProvider().generate(_prompt(evidence=sample_news), 64)
    document = json.loads(out.text)

    assert document["isHighRisk"] is True
    assert document["riskLevel"] == "critical"
    assert document["keyNews"] == sample_news[0].title
    assert document["sourceUrl"] == sample_news[0].url
    assert out.model == "keyword-heuristic"


@pytest.mark.anyio
async def test_offline_without_news_is_low_confidence() -> None:
    out = await OfflineProvider().generate(_prompt(), 64)
    document = json.loads(out.text)
    assert document["riskLevel"] == "low"
    assert document["isHighRisk"] is False
    assert document["confidenceScore"] == 0.2


@pytest.mark.anyio
async def test_offline_opportunity_levels() -> None:
    news = [
        News(title="Acme posts record profit, beats estimates"),
        News(title="Acme wins large government contract"),
    ]
    out = await OfflineProvider().generate(_prompt(AnalysisKind.OPPORTUNITY, news), 64)
    document = json.loads(out.text)
    assert document["isOpportunity"] is True
    assert document["opportunityLevel"] == "excellent"
    assert len(document["positiveFactors"]) == 2


def test_detect_provider_from_model() -> None:
    assert detect_provider_from_model("claude-sonnet-4-5-20250929") == "anthropic"
    assert detect_provider_from_model("gemini-2.5-flash") == "gemini"
    assert detect_provider_from_model("gpt-4o-mini") == "openai"
    assert detect_provider_from_model("mystery", default_provider="gemini") == "gemini"
