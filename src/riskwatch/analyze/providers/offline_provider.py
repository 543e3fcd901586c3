from __future__ import annotations

import json
from typing import Iterable, List, Sequence, Tuple

from ...models import AnalysisKind, News
from .base import Prompt, ProviderAdapter, ProviderResponse

RISK_KEYWORDS = (
    "bankruptcy",
    "bankrupt",
    "insolvency",
    "default",
    "delisting",
    "delisted",
    "fraud",
    "scam",
    "shutdown",
    "investigation",
    "lawsuit",
    "sanction",
    "export ban",
    "banned",
    "suspend",
    "crash",
    "crisis",
    "debt",
    "loss",
    "decline",
    "downgrade",
    "warning",
)
CRITICAL_KEYWORDS = ("bankruptcy", "bankrupt", "insolvency", "default", "delisting", "delisted", "fraud", "shutdown")

POSITIVE_KEYWORDS = (
    "growth",
    "profit",
    "record",
    "beat",
    "strong",
    "recovery",
    "bullish",
    "surge",
    "rally",
    "upgrade",
    "partnership",
    "acquisition",
    "contract",
    "launch",
    "approved",
    "licensed",
)
STRONG_POSITIVE_KEYWORDS = ("record", "beat", "acquisition", "contract", "upgrade")


def _matches(item: News, keywords: Iterable[str]) -> List[str]:
    haystack = f"{item.title} {item.body}".lower()
    return [keyword for keyword in keywords if keyword in haystack]


def _screen(evidence: Sequence[News], keywords: Sequence[str]) -> List[Tuple[News, List[str]]]:
    hits = []
    for item in evidence:
        found = _matches(item, keywords)
        if found:
            hits.append((item, found))
    return hits


class OfflineProvider(ProviderAdapter):
    """
    Free, network-free keyword screen over the request's evidence.

    Emits the same JSON document a language model is asked for, so its
    output flows through the normal parsing path.
    """

    name = "offline"
    tier = "free"

    def __init__(self, model: str = "keyword-heuristic") -> None:
        super().__init__(model)

    async def generate(self, prompt: Prompt, max_output_tokens: int) -> ProviderResponse:
        request = prompt.request
        if prompt.kind is AnalysisKind.OPPORTUNITY:
            document = self._opportunity(request.subject, request.evidence)
        else:
            document = self._risk(request.subject, request.evidence)
        return ProviderResponse(text=json.dumps(document, ensure_ascii=False), model=self.model)

    @staticmethod
    def _risk(subject: str, evidence: Sequence[News]) -> dict:
        hits = _screen(evidence, RISK_KEYWORDS)
        critical = any(_matches(item, CRITICAL_KEYWORDS) for item, _ in hits)
        if critical:
            level = "critical"
        elif len(hits) >= 2:
            level = "high"
        elif hits:
            level = "medium"
        else:
            level = "low"
        lead = hits[0][0] if hits else (evidence[0] if evidence else None)
        recommendation = {
            "critical": "Review this position now; the news mentions severe distress signals.",
            "high": "Follow the news closely and consider reducing exposure.",
            "medium": "Keep monitoring; one item mentions a risk signal.",
            "low": "No unusual risk signals found; keep the regular review schedule.",
        }[level]
        return {
            "isHighRisk": level in ("high", "critical"),
            "riskLevel": level,
            "summary": (
                f"Keyword screen of {len(evidence)} news item(s) for {subject}: "
                f"{len(hits)} mention risk signals."
            ),
            "threats": [f"{item.title} ({', '.join(found)})" for item, found in hits[:5]],
            "confidenceScore": 0.4 if evidence else 0.2,
            "recommendation": recommendation,
            "keyNews": lead.title if lead else "",
            "sourceUrl": lead.url if lead else "",
        }

    @staticmethod
    def _opportunity(subject: str, evidence: Sequence[News]) -> dict:
        hits = _screen(evidence, POSITIVE_KEYWORDS)
        strong = sum(1 for item, _ in hits if _matches(item, STRONG_POSITIVE_KEYWORDS))
        if strong >= 2:
            level = "excellent"
        elif strong or len(hits) >= 2:
            level = "high"
        elif hits:
            level = "medium"
        else:
            level = "low"
        lead = hits[0][0] if hits else (evidence[0] if evidence else None)
        return {
            "isOpportunity": level in ("high", "excellent"),
            "opportunityLevel": level,
            "summary": (
                f"Keyword screen of {len(evidence)} news item(s) for {subject}: "
                f"{len(hits)} mention positive signals."
            ),
            "positiveFactors": [f"{item.title} ({', '.join(found)})" for item, found in hits[:5]],
            "confidenceScore": 0.4 if evidence else 0.2,
            "timeframe": "unknown",
            "priceTarget": "",
            "keyNews": lead.title if lead else "",
            "sourceUrl": lead.url if lead else "",
        }
