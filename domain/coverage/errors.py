"""Coverage Bounded Context - Error Hierarchy.

Custom exceptions for coverage requests, RF parameter configuration and
output artifacts.
"""

from __future__ import annotations


class CoverageError(Exception):
    """Base error for coverage operations."""


class RequestValidationError(CoverageError):
    """Request is structurally invalid and cannot be clamped into range.

    Attributes:
        field: Name of the offending request field
        reason: Human-readable description
    """

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid coverage request ({field}): {reason}")


class ConfigurationError(CoverageError):
    """RF parameter or color file is missing or malformed in strict mode.

    Attributes:
        source: File name (never the full path) that failed
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(f"Configuration error in {source}: {reason}")


class OutputWriteError(CoverageError):
    """Writing one output artifact failed; in-memory results stay valid.

    Attributes:
        artifact: File name of the artifact that could not be written
    """

    def __init__(self, artifact: str, reason: str) -> None:
        self.artifact = artifact
        super().__init__(f"Could not write {artifact}: {reason}")
