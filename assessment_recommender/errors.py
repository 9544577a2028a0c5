"""
Error taxonomy shared by the recommendation pipeline.

Stage-internal failures (external services, unparseable model output)
are caught by the orchestrator and demoted to "no result".  Only
:class:`InputValidationError` is meant to reach API clients.
"""

from __future__ import annotations


class RecommenderError(Exception):
    """Base class for all recommender errors."""


class ExternalServiceError(RecommenderError):
    """An LLM, embedding or vector backend was unreachable or errored."""


class ParseError(RecommenderError):
    """An LLM response was not in the expected shape."""


class ExtractionParseError(ParseError):
    pass


class RankingParseError(ParseError):
    pass


class ConfigurationError(RecommenderError):
    """Missing credentials or inconsistent backend settings."""


class InputValidationError(RecommenderError):
    """Malformed top-level request input (client-visible)."""
