"""
Custom exceptions for Releasekeeper.

Catalog errors (RemoteFetchError, MissingArtifactError) are recovered inside the
release sources; installation errors always reach the caller.
"""

from typing import Optional


class ReleasekeeperError(Exception):
    """
    Base exception for all Releasekeeper errors.

    All custom exceptions should inherit from this class to allow for easy
    catching of all application-specific errors.
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ReleasekeeperError):
    """Exception raised when the configuration file is unreadable or holds invalid values."""

    pass


# =============================================================================
# Catalog Errors
# =============================================================================


class RemoteFetchError(ReleasekeeperError):
    """
    Exception raised when a remote catalog cannot be read or parsed.

    Attributes:
        url: The URL that was being read.
        status_code: The HTTP status code, if a response was received.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.status_code = status_code


class MissingArtifactError(ReleasekeeperError):
    """
    Exception raised when a build carries no artifact matching the expected pattern.

    Attributes:
        build_url: URL of the build that was inspected.
        pattern: The file name pattern that found no match.
    """

    def __init__(
        self,
        message: str,
        build_url: Optional[str] = None,
        pattern: Optional[str] = None,
    ) -> None:
        super().__init__(message, f"pattern: {pattern}" if pattern else None)
        self.build_url = build_url
        self.pattern = pattern


# =============================================================================
# Installation Errors
# =============================================================================


class InstallationError(ReleasekeeperError):
    """Base exception for download, extraction and removal failures."""

    pass


class NotInstalledError(InstallationError):
    """
    Exception raised when an identifier has no installation in the index.

    Attributes:
        identifier: The release identifier that was looked up.
    """

    def __init__(self, identifier: object) -> None:
        super().__init__("Release is not installed", str(identifier))
        self.identifier = identifier


class InsufficientSpaceError(InstallationError):
    """
    Exception raised before a transfer when the cache volume lacks free space.

    Attributes:
        required: Bytes announced by the remote server.
        available: Bytes free on the target volume.
        path: Directory whose volume was queried.
    """

    def __init__(self, required: int, available: int, path: Optional[str] = None) -> None:
        super().__init__(
            "Not enough free disk space",
            f"required {required} bytes, available {available} bytes",
        )
        self.required = required
        self.available = available
        self.path = path


class TransferError(InstallationError):
    """
    Exception raised when an archive transfer fails mid-stream.

    Attributes:
        url: The archive URL.
        part_path: The partial file left on disk, if any.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        part_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.part_path = part_path


class ExtractionError(InstallationError):
    """
    Exception raised when an archive is corrupt or contains unsafe members.

    Attributes:
        archive_path: The archive being extracted.
    """

    def __init__(
        self,
        message: str,
        archive_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


class RemovalError(InstallationError):
    """
    Exception raised when an installation directory cannot be deleted.

    Attributes:
        path: The directory that is still present.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path
