"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class PodcatchError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(PodcatchError):
    """Raised for issues related to configuration loading or validation."""


class MissingRequiredSetting(ConfigurationError):
    """Raised when a required setting resolves to nothing for a podcast."""

    def __init__(self, podcast: str, key: str, disabled: bool = False):
        self.podcast = podcast
        self.key = key
        reason = "cannot be disabled" if disabled else "is not set"
        super().__init__(f"Podcast '{podcast}': required setting '{key}' {reason}.")


class CompileError(PodcatchError):
    """Raised when a pattern template is malformed or names an unknown pattern."""


class ContextViolation(CompileError):
    """Raised when a pattern is used where its data is not available."""


class RenderError(PodcatchError):
    """Raised when a compiled template cannot be rendered for a given episode."""


class FeedError(PodcatchError):
    """Raised when a podcast feed cannot be fetched or parsed."""


class TransferError(PodcatchError):
    """Raised when an episode download fails after all retry attempts."""


class TrackerError(PodcatchError):
    """Raised when the download tracker ledger cannot be read or written."""


class TaggingError(PodcatchError):
    """Raised when ID3 tags cannot be written to a downloaded file."""
