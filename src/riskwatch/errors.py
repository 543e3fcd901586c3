from __future__ import annotations

from typing import Optional

from .constants import ExitCode


class RiskWatchError(Exception):
    """Base exception for all riskwatch errors."""

    exit_code: ExitCode = ExitCode.ERROR


class ConfigurationError(RiskWatchError):
    """Configuration is unusable (e.g. no provider configured at all)."""

    exit_code = ExitCode.CONFIG


class DeadlineExceeded(RiskWatchError):
    """The per-request deadline elapsed before the call completed."""


class ProviderError(RiskWatchError):
    """A backend call failed."""

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider


class AuthError(ProviderError):
    """Credentials rejected by the backend."""


class QuotaExceeded(ProviderError):
    """Account quota or billing limit reached."""


class ProviderUnavailable(ProviderError):
    """Transient server, transport or rate-limit failure."""


class StructuralError(ProviderError):
    """The backend answered but no usable text could be extracted."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        model: str = "",
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        completed: bool = True,
    ) -> None:
        super().__init__(message, provider=provider)
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        # False when the body could not be decoded at all (nothing was billed).
        self.completed = completed
