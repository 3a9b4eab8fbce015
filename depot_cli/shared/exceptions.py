"""Project-wide custom exceptions."""

from __future__ import annotations


class DepotCliError(Exception):
    """Base exception for the depot CLI suite."""


class ConfigurationError(DepotCliError):
    """Raised when configuration loading or validation fails."""


class ExtractionError(DepotCliError):
    """Raised when a document cannot be loaded or extracted."""


class UnsupportedFormatError(ExtractionError):
    """Raised when a document's institution or layout is not supported."""


class SpecError(ExtractionError, ValueError):
    """Raised when a declarative rule spec is malformed."""


class MandatorySectionError(ExtractionError):
    """Raised when a mandatory section does not match inside a block window."""

    def __init__(self, section: str, message: str | None = None) -> None:
        self.section = section
        super().__init__(message or f"Mandatory section '{section}' did not match")


class MalformedFieldError(ExtractionError, ValueError):
    """Raised when a captured value is not a valid amount, date, or currency."""

    def __init__(self, field: str, value: str | None, expected: str) -> None:
        self.field = field
        self.value = value
        self.expected = expected
        self.section: str | None = None
        super().__init__(f"Malformed {field} '{value}': expected {expected}")
