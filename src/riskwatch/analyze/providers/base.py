from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from ...errors import StructuralError
from ...models import AnalysisKind, AnalysisRequest, Tier


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str
    kind: AnalysisKind
    request: AnalysisRequest
    level: int = 0

    @property
    def text(self) -> str:
        return f"{self.system}\n\n{self.user}"


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    truncated: bool = False


class ProviderAdapter(ABC):
    """
    One backend. ``generate`` returns plain text or raises:

    - AuthError / QuotaExceeded: credentials or billing rejected
    - ProviderUnavailable: server, transport, timeout or rate limiting
    - StructuralError: answered, but no text could be extracted
    """

    name: str = ""
    tier: Tier = "paid"

    def __init__(self, model: str) -> None:
        self.model = model

    @abstractmethod
    async def generate(self, prompt: Prompt, max_output_tokens: int) -> ProviderResponse:
        """Make a single backend call."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


@dataclass(frozen=True)
class TextEnvelope:
    text: str
    truncated: bool = False


@dataclass(frozen=True)
class BlockedEnvelope:
    reason: str


@dataclass(frozen=True)
class EmptyEnvelope:
    reason: str


Envelope = Union[TextEnvelope, BlockedEnvelope, EmptyEnvelope]


def field_of(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a mapping or an SDK object alike."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def resolve_envelope(
    envelope: Envelope,
    *,
    provider: str,
    model: str,
    input_tokens: Optional[int],
    output_tokens: Optional[int],
) -> ProviderResponse:
    """Turn a resolved envelope into text, or raise StructuralError."""
    if isinstance(envelope, TextEnvelope) and envelope.text.strip():
        return ProviderResponse(
            text=envelope.text,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            truncated=envelope.truncated,
        )
    if isinstance(envelope, BlockedEnvelope):
        message = f"{provider} blocked the response: {envelope.reason}"
    elif isinstance(envelope, EmptyEnvelope):
        message = f"{provider} returned no text: {envelope.reason}"
    else:
        message = f"{provider} returned only whitespace"
    raise StructuralError(
        message,
        provider=provider,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def optional_int(value: Any) -> Optional[int]:
    """Token count as reported, or None when the backend omitted it."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
