"""Exception hierarchy and error taxonomy for the Sitemap Submitter."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure taxonomy used for retry decisions and reporting."""

    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    QUOTA_ERROR = "QUOTA_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    REQUEST_ERROR = "REQUEST_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class SubmissionError(Exception):
    """Base error carrying the structured fields used for classification."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        kind: Optional[ErrorKind] = None,
    ):
        self.message = message
        self.status = status
        self.kind = kind
        super().__init__(message)


class SitemapFetchError(SubmissionError):
    """The sitemap could not be fetched or parsed."""


class ConfigurationError(SubmissionError):
    """Required configuration or credentials are missing or invalid."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.AUTH_ERROR)


class SubmitterInitError(SubmissionError):
    """Every configured search engine client failed to initialize."""


class InvalidUrlError(ValueError):
    """A URL is not an absolute http(s) URL."""
