from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Sequence

from ..budget import BudgetLedger, TokenEstimator, char_ratio_estimator, resolve_tokens
from ..constants import Mode
from ..errors import ConfigurationError, DeadlineExceeded, QuotaExceeded, StructuralError
from ..logging import RiskWatchLogger
from ..models import AnalysisKind, AnalysisRequest, AnyAnalysis, News, Provenance
from .cooldown import ProviderCooldown
from .executor import CallExecutor
from .fallback import fallback_result
from .normalizer import ParseFailure, ResponseNormalizer
from .prompts import PromptBuilder
from .providers.base import Prompt, ProviderAdapter, ProviderResponse

MAX_ESCALATIONS = 3


class AnalysisOrchestrator:
    """
    Runs one analysis request across the provider chain.

    Flow per request:
    1. Pick the chain from the ledger's mode (paid then free, or free only)
    2. For each provider, call through the executor; on structural or parse
       failure re-issue with a shorter prompt, up to ``max_escalations`` times
    3. Salvage the last raw text if the ladder ran out, else try the next provider
    4. Nothing usable anywhere (or the deadline passed) -> terminal fallback

    Every completed backend call is recorded in the ledger exactly once.
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        ledger: BudgetLedger,
        *,
        executor: Optional[CallExecutor] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        max_escalations: int = MAX_ESCALATIONS,
        request_timeout: float = 300.0,
        estimator: Optional[TokenEstimator] = None,
        cooldown: Optional[ProviderCooldown] = None,
        logger: Optional[RiskWatchLogger] = None,
    ) -> None:
        if not adapters:
            raise ConfigurationError("No analysis provider configured")
        self.paid = [adapter for adapter in adapters if adapter.tier == "paid"]
        self.free = [adapter for adapter in adapters if adapter.tier != "paid"]
        if ledger.forced_free and not self.free:
            raise ConfigurationError("Free mode is forced but no free analysis provider is configured")
        self.ledger = ledger
        self.executor = executor or CallExecutor(logger=logger)
        self.normalizer = normalizer or ResponseNormalizer()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_escalations = max(0, min(max_escalations, self.prompt_builder.max_level))
        self.request_timeout = request_timeout
        self.estimator = estimator or char_ratio_estimator()
        self.cooldown = cooldown or ProviderCooldown(0)
        self.logger = logger

    def chain_for(self, mode: Mode) -> List[ProviderAdapter]:
        if mode is Mode.PAID:
            return self.paid + self.free
        return list(self.free)

    async def analyze_risk(self, subject: str, evidence: Iterable[News]) -> AnyAnalysis:
        return await self.analyze(AnalysisRequest(subject, tuple(evidence), AnalysisKind.RISK))

    async def analyze_opportunity(self, subject: str, evidence: Iterable[News]) -> AnyAnalysis:
        return await self.analyze(AnalysisRequest(subject, tuple(evidence), AnalysisKind.OPPORTUNITY))

    async def analyze(self, request: AnalysisRequest) -> AnyAnalysis:
        deadline = self.executor.deadline_after(self.request_timeout)
        mode = self.ledger.mode()
        chain = self.chain_for(mode)
        self._log(
            "info",
            "Analysis started",
            subject=request.subject,
            kind=request.kind.value,
            mode=mode.value,
            chain=[adapter.name for adapter in chain],
            evidence=len(request.evidence),
        )
        if not chain:
            self._log("error", "No provider available in this mode", mode=mode.value, subject=request.subject)

        for adapter in chain:
            if self.cooldown.is_suspended(adapter.name):
                self._log("info", "Skipping provider in quota cool-down", provider=adapter.name)
                continue
            try:
                result = await self._run_provider(adapter, request, deadline)
            except DeadlineExceeded as exc:
                self._log("warning", "Request deadline exceeded", provider=adapter.name, error=str(exc))
                break
            except ConfigurationError:
                raise
            except Exception as exc:
                if isinstance(exc, QuotaExceeded):
                    self.cooldown.suspend(adapter.name)
                self._log(
                    "warning",
                    "Provider failed, trying next",
                    provider=adapter.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if result is not None:
                self._log(
                    "info",
                    "Analysis complete",
                    subject=request.subject,
                    provider=result.provenance.provider,
                    model=result.provenance.model,
                    partial=result.provenance.partial,
                )
                return result

        self._log("warning", "All providers failed, using fallback", subject=request.subject, kind=request.kind.value)
        return fallback_result(request)

    async def analyze_many(self, requests: Sequence[AnalysisRequest], concurrency: int = 4) -> List[AnyAnalysis]:
        """Analyze independent requests concurrently; results keep input order."""
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run(request: AnalysisRequest) -> AnyAnalysis:
            async with semaphore:
                return await self.analyze(request)

        return list(await asyncio.gather(*(run(request) for request in requests)))

    async def _run_provider(
        self,
        adapter: ProviderAdapter,
        request: AnalysisRequest,
        deadline: float,
    ) -> Optional[AnyAnalysis]:
        """Ladder for one provider. None means the provider produced no text at all."""
        last_failure: Optional[ParseFailure] = None
        provenance = Provenance(provider=adapter.name, model=adapter.model, tier=adapter.tier)

        for level in range(self.max_escalations + 1):
            prompt = self.prompt_builder.build(request, level)
            max_tokens = self.prompt_builder.output_tokens(level)
            try:
                response = await self.executor.execute(
                    lambda: self._call(adapter, prompt, max_tokens),
                    deadline=deadline,
                    context=f"{adapter.name}/{request.kind.value}/level{level}",
                )
            except StructuralError as exc:
                self._log(
                    "warning",
                    "Structural failure, simplifying prompt",
                    provider=adapter.name,
                    ladder_level=level,
                    error=str(exc),
                )
                continue
            except DeadlineExceeded:
                raise
            except Exception:
                if last_failure is not None:
                    break
                raise

            provenance = provenance.model_copy(update={"model": response.model or adapter.model})
            outcome = self.normalizer.parse(response.text, request.kind, provenance)
            if not isinstance(outcome, ParseFailure):
                return outcome
            last_failure = outcome
            self._log(
                "warning",
                "Unparseable response, simplifying prompt",
                provider=adapter.name,
                ladder_level=level,
                reason=outcome.reason,
            )

        if last_failure is not None:
            self._log("info", "Salvaging unparseable response", provider=adapter.name, reason=last_failure.reason)
            return self.normalizer.salvage(last_failure, request.kind, provenance)
        return None

    async def _call(self, adapter: ProviderAdapter, prompt: Prompt, max_tokens: int) -> ProviderResponse:
        """One backend call; records usage for every call the backend completed."""
        try:
            response = await adapter.generate(prompt, max_tokens)
        except StructuralError as exc:
            if exc.completed:
                self._record(adapter.name, exc.model or adapter.model, prompt, "", exc.input_tokens, exc.output_tokens)
            raise
        self._record(
            adapter.name,
            response.model or adapter.model,
            prompt,
            response.text,
            response.input_tokens,
            response.output_tokens,
        )
        return response

    def _record(
        self,
        provider: str,
        model: str,
        prompt: Prompt,
        text: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
    ) -> None:
        try:
            self.ledger.record_usage(
                provider,
                model,
                resolve_tokens(input_tokens, prompt.text, self.estimator),
                resolve_tokens(output_tokens, text, self.estimator),
            )
        except OSError as exc:
            self._log("error", "Could not persist usage", provider=provider, model=model, error=str(exc))

    def _log(self, severity: str, message: str, **fields) -> None:
        if self.logger is not None:
            getattr(self.logger, severity)(message, **fields)
