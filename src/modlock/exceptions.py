"""
Custom exceptions for the modlock application.

This module defines domain-specific exceptions that separate recoverable
per-candidate failures from fatal ones, so the fetch engine can decide
whether to fall through to the next download strategy.
"""

from typing import Optional


class ModlockError(Exception):
    """
    Base exception for all modlock errors.

    All custom exceptions in modlock inherit from this class so callers
    (notably the CLI) can catch every application-specific error at once.
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


class ConfigurationError(ModlockError):
    """
    Exception raised when configuration is invalid or cannot be read.

    This includes:
    - Unreadable configuration files
    - Invalid YAML or non-mapping documents
    - Values of the wrong type
    """

    pass


# =============================================================================
# Parse Errors
# =============================================================================


class ParseError(ModlockError):
    """
    Exception raised for malformed input documents.

    Covers go.mod/go.sum manifests, lockfiles, and credential files. Parse
    errors are fatal: no partial result is returned.

    Attributes:
        source: Path or name of the document being parsed.
        line: 1-based line number where parsing failed, if known.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.source = source
        self.line = line

    def __str__(self) -> str:
        location = ""
        if self.source:
            location = f" ({self.source}"
            location += f":{self.line})" if self.line else ")"
        base = f"{self.message}{location}"
        if self.details:
            return f"{base} - {self.details}"
        return base


# =============================================================================
# Resolution Errors
# =============================================================================


class ResolutionError(ModlockError):
    """
    Exception raised when no viable source candidate can be constructed.

    Attributes:
        path: Module path being resolved.
        version: Module version being resolved.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        version: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path
        self.version = version


# =============================================================================
# Transfer Errors
# =============================================================================


class TransferError(ModlockError):
    """
    Exception raised when downloading from a source candidate fails.

    A TransferError on one candidate is recoverable: the fetcher moves on to
    the next candidate. It becomes fatal only when every candidate failed.

    Attributes:
        url: The URL that was being downloaded.
        strategy: Name of the strategy kind that failed.
        status_code: HTTP status code, when the server answered.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        strategy: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.strategy = strategy
        self.status_code = status_code


# =============================================================================
# Archive Errors
# =============================================================================


class ExtractionError(ModlockError):
    """
    Exception raised when a downloaded archive is corrupt or cannot be extracted.

    Attributes:
        archive_path: Path to the problematic archive.
    """

    def __init__(
        self,
        message: str,
        archive_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


# =============================================================================
# Non-fatal conditions
# =============================================================================


class SidecarWriteWarning(ModlockError):
    """
    Condition recorded when a cache sidecar file cannot be written.

    Never raised. Instances are built and logged at WARNING level so the
    message format matches the rest of the hierarchy.

    Attributes:
        path: Sidecar file that could not be written.
    """

    def __init__(
        self, message: str, path: Optional[str] = None, details: Optional[str] = None
    ) -> None:
        super().__init__(message, details)
        self.path = path
