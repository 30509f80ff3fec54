from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for every failure raised by the analysis pipeline."""


class ConfigurationError(AnalysisError):
    pass


class CatalogError(ConfigurationError):
    pass


class ValidationError(AnalysisError):
    pass


class NoModelFits(AnalysisError):
    """The text is longer than the character budget of every model in the cascade."""

    def __init__(self, text_length: int, largest_budget: int) -> None:
        self.text_length = text_length
        self.largest_budget = largest_budget
        super().__init__(
            f"Text is too long for every available model ({text_length} characters, "
            f"limit {max(0, largest_budget)})."
        )


class TransportError(AnalysisError):
    pass


class MalformedResponse(AnalysisError):
    pass


class RetryableUpstreamError(AnalysisError):
    """A per-model failure that is resolved by moving to the next model."""


class FatalUpstreamError(AnalysisError):
    """An upstream error expected to repeat on every model; aborts the cascade."""

    def __init__(self, status_code: int, message: str, model_name: Optional[str] = None) -> None:
        self.status_code = status_code
        self.upstream_message = message
        self.model_name = model_name
        super().__init__(f"Google API Error: {message}")


class CascadeExhausted(AnalysisError):
    DEFAULT_MESSAGE = "All available AI models in the cascade failed or are at capacity."

    def __init__(self, message: Optional[str] = None, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message or self.DEFAULT_MESSAGE)


class StoreError(AnalysisError):
    pass


class EnqueueError(AnalysisError):
    pass
