"""
Error taxonomy for the commit sync service.

Registration-time errors are raised straight to the caller.
Errors inside the background fetch loops are caught there, logged
and recorded on the repository row.
"""


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class ConfigError(SyncError):
    """Invalid environment configuration."""


class InvalidNameError(SyncError):
    """Repository name is not of the form owner/repo."""

    def __init__(self, name: str):
        super().__init__(
            f"invalid repository name '{name}', expected format is owner/repositoryName"
        )
        self.name = name


class AlreadyRegisteredError(SyncError):
    """Repository is already tracked."""

    def __init__(self, name: str):
        super().__init__(f"repository '{name}' is already added")
        self.name = name


class NotFoundError(SyncError):
    """Unknown repository id/name, or a 404 from GitHub."""


class RateLimitedError(SyncError):
    """GitHub refused the request outright (403/429)."""


class MetadataUnavailableError(SyncError):
    """Non-success, non-rate-limit response while fetching repository metadata."""


class TransportError(SyncError):
    """Network failure, non-success commit listing, or undecodable body."""


class CancelledError(SyncError):
    """The shared cancellation signal was observed mid-operation."""
