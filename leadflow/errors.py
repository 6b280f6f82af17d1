"""Exception types shared across the pipeline stages."""

from typing import Optional


class LeadflowError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(LeadflowError):
    """Missing or invalid configuration. Fatal at startup."""


class ExtractionError(LeadflowError):
    """The extractor could not turn a source item into profile fields."""


class ClassifierError(LeadflowError):
    """The classifier service failed (timeout, API error, bad credentials)."""


class VerdictParseError(LeadflowError):
    """Classifier output did not contain a usable verdict."""


class VerdictValidationError(LeadflowError):
    """A verdict parsed fine but breaks the length limits."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class CampaignAPIError(LeadflowError):
    """Non-2xx response or network failure from the campaign service."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)
