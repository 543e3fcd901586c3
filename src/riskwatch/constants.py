from __future__ import annotations

from decimal import Decimal
from enum import Enum


class Mode(str, Enum):
    """Provider-selection mode derived from budget state."""

    FREE = "free"
    PAID = "paid"


class ExitCode(int, Enum):
    """Process exit codes."""

    SUCCESS = 0
    ERROR = 2
    CONFIG = 3


class Limits:
    """Shared hard limits."""

    COST_QUANTUM = Decimal("0.000001")
    RETAIN_MONTHS = 12
    MAX_SALVAGE_SUMMARY = 1_000
    CHARS_PER_TOKEN = 4
