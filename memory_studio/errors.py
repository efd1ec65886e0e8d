"""Exception types raised by the services and mapped to HTTP responses by the app."""

from typing import List, Optional


class StudioError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Optional[List] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(StudioError):
    status_code = 400


class NotFoundError(StudioError):
    status_code = 404


class EmbeddingError(StudioError):
    """The embedding producer failed or took too long."""

    status_code = 400


class ConfigurationError(StudioError):
    status_code = 500


class ProviderError(StudioError):
    """An upstream AI provider call failed."""

    def __init__(self, message: str, status_code: int = 500, details: Optional[List] = None):
        super().__init__(message, details)
        self.status_code = status_code
