"""
Exception hierarchy for tool resolution.

Leaf strategies raise the precise subclass; the fallback orchestrator wraps
the last one it saw in AllStrategiesExhausted, keeping it as ``__cause__``.
"""

from __future__ import annotations


class ResolutionError(Exception):
    """
    Base exception for resolution errors.

    Attributes:
        message: Human-readable error message
        retryable: Whether retrying the same strategy could succeed
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        retryable: bool = False,
        remediation: str | None = None,
    ):
        self.message = message
        self.retryable = retryable
        self.remediation = remediation
        super().__init__(message)


class ConfigurationError(ResolutionError, ValueError):
    """Raised when a strategy is configured in a way that can never work."""
    pass


class NotFound(ResolutionError):
    """Raised when the searched location lacks the executable or marker."""

    def __init__(self, message: str, executable: str | None = None, searched: str | None = None):
        super().__init__(message)
        self.executable = executable
        self.searched = searched


class WrongVersion(ResolutionError):
    """
    Raised when a tool was found but its version is outside [min, max].

    Attributes:
        executable: Executable that was checked
        where_found: Tool home the version command ran in
        detected_version: Version parsed from the command output (may be None)
        min_version: Inclusive lower bound, or None
        max_version: Inclusive upper bound, or None
    """
    def __init__(
        self,
        executable: str,
        where_found: str,
        detected_version: str | None,
        min_version: str | None = None,
        max_version: str | None = None,
    ):
        self.executable = executable
        self.where_found = where_found
        self.detected_version = detected_version
        self.min_version = min_version
        self.max_version = max_version

        requirement = ""
        if min_version is not None:
            requirement += f' >= "{min_version}"'
        if min_version is not None and max_version is not None:
            requirement += " and"
        if max_version is not None:
            requirement += f' <= "{max_version}"'
        super().__init__(
            f"Executable '{executable}' at {where_found} is version "
            f"\"{detected_version}\" but we require{requirement}"
        )


class HttpFailure(ResolutionError):
    """
    Raised when the server was reachable but its answer was unacceptable.

    Attributes:
        uri: Resource that was requested
        username: Identity used, or None for anonymous requests
        status_code: HTTP status, or None when the failure was a bad header
    """
    def __init__(
        self,
        uri: str,
        username: str | None,
        status_code: int | None = None,
        reason: str | None = None,
    ):
        self.uri = uri
        self.username = username
        self.status_code = status_code
        if reason is None:
            reason = str(status_code)
        who = "Anonymous" if username is None else "Authenticated"
        as_user = "" if username is None else f" as {username}"
        super().__init__(f"{who} HTTP request for {uri}{as_user} failed, {reason}")


class NetworkFailure(ResolutionError):
    """Raised when the server could not be reached at all."""

    def __init__(self, message: str, uri: str | None = None):
        super().__init__(message, retryable=True)
        self.uri = uri


class FilesystemError(ResolutionError):
    """Raised when the node's filesystem refuses an operation (permissions, disk full)."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message, remediation="Check permissions and free space in the tools root")
        self.path = path


class UnpackError(ResolutionError):
    """
    Raised when a downloaded archive could not be unpacked.

    Reports how much of the body was consumed so truncated transfers are
    easy to spot.
    """
    def __init__(self, uri: str, bytes_read: int, expected_length: int | None):
        self.uri = uri
        self.bytes_read = bytes_read
        self.expected_length = expected_length
        expected = "unknown" if expected_length is None else str(expected_length)
        super().__init__(
            f"Failed to unpack {uri} (read {bytes_read} bytes of {expected} expected)",
            retryable=True,
        )


class AllStrategiesExhausted(ResolutionError):
    """
    Raised by a fallback group once every applicable strategy has failed.

    The last underlying error is available both as ``last_error`` and as
    ``__cause__``; it is None when no strategy applied to the node.
    """
    def __init__(self, message: str, last_error: BaseException | None = None):
        super().__init__(message)
        self.last_error = last_error
