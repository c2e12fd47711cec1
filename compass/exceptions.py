"""Custom exceptions for the Compass application."""
from typing import Optional


class ProviderError(Exception):
    """Raised when an external provider (search, financial data, LLM) call fails."""

    is_capacity = False

    def __init__(self, message: str, provider: str = "", cause: Optional[Exception] = None):
        super().__init__(message)
        self.provider = provider
        self.cause = cause


class NetworkError(ProviderError):
    """The provider could not be reached."""


class RateLimited(ProviderError):
    """The provider is overloaded or throttling us. Retryable through a fallback."""

    is_capacity = True


class InvalidResponse(ProviderError):
    """The provider answered, but not with anything we can use."""


class ProviderTimeout(ProviderError):
    """The provider did not answer in time."""


class ResearchNotFound(Exception):
    """Raised when a market research record cannot be loaded for a run."""


class ResearchInProgress(Exception):
    """Raised when a company already has a market research run in progress."""

    def __init__(self, research_id):
        super().__init__(f"Market research {research_id} already in progress")
        self.research_id = research_id
