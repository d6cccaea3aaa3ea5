"""
Structured error types for procspine.

Every error raised by procspine extends :class:`ProcSpineError` and carries
a category, an explicit retry flag, structured context and an optional
chained cause, so callers can log and route failures without parsing
messages.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     ProcSpineError                        │
        │        (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────┤
        │                                                           │
        │  ValidationError      ProcessError        ConfigError     │
        │  (VALIDATION)         (PROCESS)           (CONFIG)        │
        │       │                    │                              │
        │  InvalidInputError    ProcessStateError                   │
        └──────────────────────────────────────────────────────────┘

What is NOT an error:
    A process that exits non-zero, or that cannot be spawned at all, is a
    normal outcome. The runner treats every finished process the same way;
    callers inspect ``exit_code`` on the handle.

Examples:
    >>> error = InvalidInputError("Cannot run in parallel 0 commands")
    >>> error.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> error.retryable
    False

    >>> error = ProcessStateError("Process is already started")
    >>> error.with_context(command="echo foo").context.command
    'echo foo'

Tags:
    error-handling, exception-hierarchy, error-context, procspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing.

    Attributes:
        VALIDATION: Bad arguments handed to a public entry point
        PROCESS: Misuse of a process handle's lifecycle
        CONFIG: Missing or invalid settings
        INTERNAL: Bugs, unexpected state
    """

    VALIDATION = "VALIDATION"     # Bad input, never retryable
    PROCESS = "PROCESS"           # Process lifecycle misuse
    CONFIG = "CONFIG"             # Invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        command: Command line of the process involved, if any
        pid: OS process id, if the process was spawned
        index: Position of the offending element in the caller's input
        metadata: Additional key-value pairs
    """

    command: str | None = None
    pid: int | None = None
    index: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["command", "pid", "index"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ProcSpineError(Exception):
    """
    Base exception for all procspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only need a message.

    Examples:
        >>> error = ProcSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["error_type"]
        'ProcSpineError'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ProcSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InvalidInputError("Bad element").with_context(index=3)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS (Never Retryable)
# =============================================================================


class ValidationError(ProcSpineError):
    """Input failed validation. Fix the input and call again."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class InvalidInputError(ValidationError, ValueError):
    """
    Invalid arguments passed to a public entry point.

    Raised by :func:`~procspine.execution.runner.run_parallel` before any
    process is started, so a failed call has no side effects. Also a
    ``ValueError`` for callers that catch builtin exceptions.
    """


# =============================================================================
# PROCESS ERRORS
# =============================================================================


class ProcessError(ProcSpineError):
    """Base class for process handle errors."""

    default_category = ErrorCategory.PROCESS
    default_retryable = False


class ProcessStateError(ProcessError, RuntimeError):
    """
    A process handle was used out of lifecycle order.

    Examples: calling ``start()`` twice, or ``wait()`` on a process that was
    never started.
    """


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(ProcSpineError):
    """Settings could not be loaded or failed validation."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ProcSpineError",
    "ValidationError",
    "InvalidInputError",
    "ProcessError",
    "ProcessStateError",
    "ConfigError",
]
