"""TrendPilot: multi-tenant agent scheduler and trend-selection engine."""

__version__ = "0.1.0"
