"""procspine core -- errors, logging and settings shared by every module.

Architecture::

    errors.py     Structured error hierarchy (ProcSpineError, InvalidInputError)
    logging.py    structlog configuration + get_logger()
    settings.py   RunnerSettings (pydantic-settings, PROCSPINE_* env vars)
"""

from procspine.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InvalidInputError,
    ProcessError,
    ProcessStateError,
    ProcSpineError,
    ValidationError,
)
from procspine.core.logging import configure_logging, get_logger
from procspine.core.settings import RunnerSettings, get_settings

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidInputError",
    "ProcessError",
    "ProcessStateError",
    "ProcSpineError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "RunnerSettings",
    "get_settings",
]
