from __future__ import annotations

from ..models import (
    AnalysisKind,
    AnalysisRequest,
    AnyAnalysis,
    OpportunityAnalysis,
    OpportunityLevel,
    Provenance,
    RiskAnalysis,
    RiskLevel,
)

FALLBACK_CONFIDENCE = 0.1

FALLBACK_PROVENANCE = Provenance(provider="none", model="none", tier="fallback", degraded=True)


def fallback_result(request: AnalysisRequest) -> AnyAnalysis:
    """
    Deterministic result used when no provider produced anything.

    The output depends only on the request's subject and kind, so repeated
    failures for the same holding look identical to downstream consumers.
    """
    summary = f"Unable to analyze {request.subject} at this time"
    if request.kind is AnalysisKind.RISK:
        return RiskAnalysis(
            is_high_risk=False,
            risk_level=RiskLevel.UNKNOWN,
            summary=summary,
            threats=["Unable to determine"],
            confidence_score=FALLBACK_CONFIDENCE,
            recommendation="Try again later",
            key_news="No data",
            source_url="unavailable",
            provenance=FALLBACK_PROVENANCE,
        )
    return OpportunityAnalysis(
        is_opportunity=False,
        opportunity_level=OpportunityLevel.UNKNOWN,
        summary=summary,
        positive_factors=[],
        confidence_score=FALLBACK_CONFIDENCE,
        timeframe="unknown",
        price_target="unknown",
        key_news="No data",
        source_url="unavailable",
        provenance=FALLBACK_PROVENANCE,
    )
