from __future__ import annotations

import math
import re
from typing import Callable, Optional

from ..constants import Limits

TokenEstimator = Callable[[str], int]

_THAI = re.compile("[\u0e00-\u0e7f]")


def char_ratio_estimator(chars_per_token: int = Limits.CHARS_PER_TOKEN) -> TokenEstimator:
    """Rough token count: ceil(len(text) / chars_per_token)."""
    if chars_per_token < 1:
        raise ValueError("chars_per_token must be >= 1")

    def estimate(text: str) -> int:
        return math.ceil(len(text or "") / chars_per_token)

    return estimate


def script_aware_estimator(chars_per_token: int = Limits.CHARS_PER_TOKEN) -> TokenEstimator:
    """Thai characters count one token each; everything else at chars_per_token."""
    if chars_per_token < 1:
        raise ValueError("chars_per_token must be >= 1")

    def estimate(text: str) -> int:
        text = text or ""
        thai = len(_THAI.findall(text))
        return math.ceil(thai + (len(text) - thai) / chars_per_token)

    return estimate


ESTIMATORS = {
    "chars": char_ratio_estimator,
    "thai": script_aware_estimator,
}


def resolve_tokens(reported: Optional[int], text: str, estimator: TokenEstimator) -> int:
    """Prefer the backend's count; fall back to the estimator."""
    if reported is not None and reported >= 0:
        return int(reported)
    return estimator(text)
