"""
Exceptions raised by the audit pipeline.

Only UrlValidationError escapes an audit; everything else is caught by the
analyzer that caused it and reported in that analyzer's errors list.
"""


class AuditError(Exception):
    """Base class for audit pipeline errors."""


class UrlValidationError(AuditError):
    """The top-level URL failed validation; the audit does not start."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class UnsafeUrlError(UrlValidationError):
    """A URL discovered during analysis points at a blocked target."""


class FetchError(AuditError):
    """An outbound request failed (timeout, connection, protocol)."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"{message} ({url})")


# Failures an analyzer recovers from locally
RECOVERABLE_ERRORS = (FetchError, UnsafeUrlError)
