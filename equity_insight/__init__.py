"""
EquityInsight - AI-assisted research for Indian equities.

Builds report-specific prompts for a search-grounded generative model,
retries transient failures, reconciles the free-form model output into
structured reports, and caches short-lived results per request identity.
"""

__version__ = "0.1.0"
