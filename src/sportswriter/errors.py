from __future__ import annotations


class SportsWriterError(Exception):
    pass


class UpstreamError(SportsWriterError):
    """Network, HTTP, JSON or payload-shape failure talking to an external API."""

    def __init__(self, message: str, *, endpoint: str | None = None, status: int | None = None):
        self.endpoint = endpoint
        self.status = status
        super().__init__(message)


class ValidationError(SportsWriterError, ValueError):
    """A configuration value was rejected; a safe default was substituted."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class PersistenceError(SportsWriterError):
    pass


class UnexpectedError(SportsWriterError):
    pass


class InvalidTransitionError(SportsWriterError, ValueError):
    pass
