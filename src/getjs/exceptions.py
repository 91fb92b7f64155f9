"""Custom exceptions for getjs."""


class GetJSError(Exception):
    """Base exception for all getjs errors."""


class ConfigError(GetJSError):
    """Raised when configuration or user input is invalid or cannot be loaded.

    Covers bad target URLs, missing list/cookie/config files, invalid YAML and
    session material that cannot be used in the current mode.
    """


class CollectorStateError(GetJSError):
    """Raised when a collector is driven through an illegal state transition."""


class NavigationError(GetJSError):
    """Raised when navigating to a target fails for a reason other than a timeout."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"Navigation to {target} failed: {reason}")


class DownloadError(GetJSError):
    """Raised when a single JavaScript file cannot be fetched."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Download of {url} failed: {reason}")
