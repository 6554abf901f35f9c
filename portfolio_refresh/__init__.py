"""Portfolio valuation cache and refresh queue service."""

__version__ = "1.0.0"
