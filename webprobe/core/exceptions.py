"""Exception hierarchy for the probing core."""

from typing import Optional


class WebProbeError(Exception):
    """Base error carrying an optional details mapping."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class ConfigurationError(WebProbeError):
    """Invalid scan configuration value."""


class ScanCancelled(WebProbeError):
    """Cooperative cancellation signal raised at a checkpoint."""

    def __init__(self, message: str = "scan cancelled", details: Optional[dict] = None):
        super().__init__(message, details)


class FetchError(WebProbeError):
    """Network-level failure while fetching a resource."""
