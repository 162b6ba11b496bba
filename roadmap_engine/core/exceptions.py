"""
Roadmap engine errors.

Every error the engine raises on purpose derives from ``RoadmapError``.
Each class carries a stable ``error_code`` plus category, severity and
retryability, so logs and the CLI can report failures without parsing
messages. ``ErrorContext`` records where the failure happened.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    RESOURCE = "resource"
    EXTERNAL_SERVICE = "external_service"
    INTERNAL = "internal"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    operation: str = ""
    component: str = ""
    milestone_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty named fields followed by ``extra``."""
        named = {
            "operation": self.operation,
            "component": self.component,
            "milestone_id": self.milestone_id,
        }
        return {**{k: v for k, v in named.items() if v}, **self.extra}


class RoadmapError(Exception):
    error_code: str = "ROADMAP_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context if context is not None else ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        text = self.message
        if self.context.operation:
            text += f" [operation={self.context.operation}]"
        if self.cause is not None:
            text += f" [caused by: {type(self.cause).__name__}: {self.cause}]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "message": self.message,
            "context": self.context.to_dict(),
            "cause": None if self.cause is None else str(self.cause),
        }


class StateNotLoadedError(RoadmapError):
    error_code = "STATE_NOT_LOADED"

    def __init__(self, context: ErrorContext | None = None):
        super().__init__("Roadmap state not initialised. Call load() first.", context)


class ConfigurationError(RoadmapError):
    error_code = "CONFIG_ERROR"
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.HIGH


class InvalidConfigError(ConfigurationError):
    error_code = "INVALID_CONFIG"


# -- caller input -----------------------------------------------------------


class ValidationError(RoadmapError):
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW


class MilestoneNotFoundError(ValidationError):
    error_code = "MILESTONE_NOT_FOUND"

    def __init__(self, milestone_id: Any, context: ErrorContext | None = None):
        context = context if context is not None else ErrorContext()
        context.milestone_id = str(milestone_id)
        super().__init__(f"Unknown milestone: {milestone_id}", context)
        self.milestone_id = milestone_id


class EmptyUpdateError(ValidationError):
    error_code = "EMPTY_UPDATE"

    def __init__(self, context: ErrorContext | None = None):
        super().__init__("No updates provided", context)


class UnknownStatusError(ValidationError):
    error_code = "UNKNOWN_STATUS"

    def __init__(self, value: Any, context: ErrorContext | None = None):
        super().__init__(f"Unknown roadmap status: {value}", context)
        self.value = value


class InvalidStatusTransitionError(ValidationError):
    """A status change the transition table does not allow, e.g. leaving completed."""

    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: str, to_status: str, context: ErrorContext | None = None):
        message = f"Invalid roadmap status transition: {from_status} -> {to_status}"
        super().__init__(message, context)
        self.from_status = from_status
        self.to_status = to_status


class InvalidMilestoneFieldError(ValidationError):
    error_code = "INVALID_MILESTONE_FIELD"

    def __init__(self, field_name: str, context: ErrorContext | None = None):
        super().__init__(f"Unknown milestone field: {field_name}", context)
        self.field_name = field_name


# -- files and locks ----------------------------------------------------------


class ResourceError(RoadmapError):
    error_code = "RESOURCE_ERROR"
    category = ErrorCategory.RESOURCE


class ResourceNotFoundError(ResourceError):
    error_code = "RESOURCE_NOT_FOUND"
    severity = ErrorSeverity.LOW


class BackupNotFoundError(ResourceNotFoundError):
    error_code = "BACKUP_NOT_FOUND"

    def __init__(self, filename: str, context: ErrorContext | None = None):
        super().__init__(f"Unknown roadmap backup: {filename}", context)
        self.filename = filename


class StateLockError(ResourceError):
    """Another writer kept the state lock for the whole retry window."""

    error_code = "STATE_LOCK_ERROR"
    severity = ErrorSeverity.HIGH
    retryable = True


# -- collaborators ------------------------------------------------------------


class ExternalServiceError(RoadmapError):
    error_code = "EXTERNAL_SERVICE_ERROR"
    category = ErrorCategory.EXTERNAL_SERVICE
    retryable = True


class GitAutomationError(ExternalServiceError):
    error_code = "GIT_AUTOMATION_ERROR"
    retryable = False


TRANSIENT_OS_ERRORS = (OSError, ConnectionError, TimeoutError)


def is_retryable(error: Exception) -> bool:
    """RoadmapErrors say so themselves; otherwise only OS level errors count."""
    if isinstance(error, RoadmapError):
        return error.retryable
    return isinstance(error, TRANSIENT_OS_ERRORS)


def get_error_code(error: Exception) -> str:
    return getattr(error, "error_code", None) or type(error).__name__.upper()


def wrap_error(
    error: Exception,
    wrapper_class: type[RoadmapError],
    message: str | None = None,
    context: ErrorContext | None = None,
) -> RoadmapError:
    """Re-raise-ready ``wrapper_class`` instance with ``error`` as its cause."""
    return wrapper_class(message=message or str(error), context=context, cause=error)
