"""Cost-aware, multi-provider AI analysis of portfolio news."""

__version__ = "0.1.0"
