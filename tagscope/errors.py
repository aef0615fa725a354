# tagscope/errors.py
"""
Error types for the tagscope analysis pipeline.

Error Hierarchy:
────────────────
    TagScopeError (base)
    ├── IRLoadError          - IR file missing or malformed
    ├── ConfigurationError   - target type / discriminant / tag group absent
    └── InvariantViolation   - IR classification contract broken downstream

Every error is fatal.  Errors are raised where they are detected and are
only caught by the command-line driver, which prints a single diagnostic
line and exits with :attr:`TagScopeError.exit_code`.  The analysis is a
pure function of an immutable IR snapshot, so nothing is ever retried.

Error Codes:
────────────
Each class carries a code of the form ``TAGS-NNNN``:
  - 1000-1999: IR loading
  - 2000-2999: configuration / aggregate resolution
  - 9000-9999: internal invariant violations
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Optional


@unique
class ErrorPhase(Enum):
    """Pipeline stage where the error occurred."""

    LOAD = "load"
    RESOLVE = "resolve"
    INTERNAL = "internal"


class TagScopeError(Exception):
    """Base class for every error raised by tagscope."""

    code: str = "TAGS-0000"
    phase: ErrorPhase = ErrorPhase.INTERNAL
    exit_code: int = 1

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class IRLoadError(TagScopeError):
    """The IR interchange file could not be read or is malformed."""

    code = "TAGS-1000"
    phase = ErrorPhase.LOAD
    exit_code = 2

    def __init__(self, message: str, *, where: Optional[str] = None,
                 hint: Optional[str] = None) -> None:
        if where:
            message = f"{where}: {message}"
        super().__init__(message, hint=hint)
        self.where = where


class ConfigurationError(TagScopeError):
    """The aggregate descriptor cannot be built from the type layer."""

    code = "TAGS-2000"
    phase = ErrorPhase.RESOLVE
    exit_code = 1


class InvariantViolation(TagScopeError):
    """A downstream stage received an instruction the IR contract forbids."""

    code = "TAGS-9000"
    phase = ErrorPhase.INTERNAL
    exit_code = 3
