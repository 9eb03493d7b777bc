"""cachesync Error Handling Module

This module defines the error handling system for cachesync, providing
structured error classes with context information.

The error hierarchy follows these principles:
- One Source of Truth: All error codes are defined in ErrorCode enum
- Structured Context: ErrorContext provides additional information
- Proper Exception Chaining: Original exceptions are preserved
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union

# Type alias for primitive context values (str, int, float, bool only)
PrimitiveContextValue = Union[str, int, float, bool]

# Default keys to mask in safe_dict
SAFE_DICT_MASK_KEYS: tuple[str, ...] = ("subscriber_id",)


class ErrorCode(str, Enum):
    """Error codes for cachesync.

    This enum serves as the single source of truth for all error codes
    used throughout the engine.
    """

    # Read path
    FETCH_FAILED = "FETCH_FAILED"
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    FETCH_CANCELLED = "FETCH_CANCELLED"

    # Write path
    COMMIT_FAILED = "COMMIT_FAILED"
    COMMIT_TIMEOUT = "COMMIT_TIMEOUT"
    MUTATION_NOT_FOUND = "MUTATION_NOT_FOUND"

    # Offline queue
    QUEUE_CAPACITY_EXCEEDED = "QUEUE_CAPACITY_EXCEEDED"
    QUEUE_OPERATION_ERROR = "QUEUE_OPERATION_ERROR"

    # Conflict resolution
    CONFLICT_RESOLUTION_FAILED = "CONFLICT_RESOLUTION_FAILED"

    # Persistence
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    PERSISTENCE_READ_FAILED = "PERSISTENCE_READ_FAILED"
    PERSISTENCE_WRITE_FAILED = "PERSISTENCE_WRITE_FAILED"
    CACHE_SERIALIZATION_ERROR = "CACHE_SERIALIZATION_ERROR"
    CACHE_CORRUPTED = "CACHE_CORRUPTED"

    # Validation and configuration
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_SELECTOR = "INVALID_SELECTOR"
    CONFIG_ERROR = "CONFIG_ERROR"
    CONFIG_MISSING = "CONFIG_MISSING"

    # Engine lifecycle
    ENGINE_CLOSED = "ENGINE_CLOSED"
    SUBSCRIBER_CALLBACK_FAILED = "SUBSCRIBER_CALLBACK_FAILED"

    # CLI
    CLI_COMMAND_FAILED = "CLI_COMMAND_FAILED"
    CLI_OUTPUT_ERROR = "CLI_OUTPUT_ERROR"


def _coerce_primitives(value: Any | None) -> dict[str, PrimitiveContextValue] | None:
    """Coerce additional_data values to primitives.

    Converts Path, Enum, Decimal to primitive types. ``None`` values are
    dropped so optional fields can be passed straight through.

    Args:
        value: Input dictionary or None

    Returns:
        Dictionary with primitive values only, or None

    Raises:
        TypeError: If value is not a dict or contains unconvertible types
    """
    if value is None:
        return None

    if not isinstance(value, dict):
        error_msg = f"additional_data must be dict, got {type(value).__name__}"
        raise TypeError(error_msg)

    coerced: dict[str, PrimitiveContextValue] = {}
    for key, val in value.items():
        if val is None:
            continue
        if isinstance(val, (str, int, float, bool)):
            coerced[key] = val
        elif isinstance(val, Path):
            coerced[key] = str(val)
        elif isinstance(val, Enum):
            coerced[key] = val.value
        elif isinstance(val, Decimal):
            coerced[key] = float(val)
        else:
            error_msg = (
                f"Cannot coerce {type(val).__name__} to primitive type. "
                f"Only str, int, float, bool, Path, Enum, Decimal are allowed."
            )
            raise TypeError(error_msg)

    return coerced


@dataclass(frozen=True)
class ErrorContext:
    """Context information for errors.

    Only primitive types (str, int, float, bool) are allowed in
    additional_data so the context can be logged as JSON safely. Payload
    values are never placed here; the engine treats them as opaque.

    Attributes:
        fingerprint: Optional cache key associated with the error
        operation: Optional operation name that caused the error
        subscriber_id: Optional subscriber identifier (masked in logs)
        additional_data: Optional dict with primitive values only
    """

    fingerprint: str | None = None
    operation: str | None = None
    subscriber_id: str | None = None
    additional_data: dict[str, PrimitiveContextValue] | None = None

    def __post_init__(self) -> None:
        """Post-initialization validation and coercion."""
        if self.additional_data is not None:
            coerced = _coerce_primitives(self.additional_data)
            object.__setattr__(self, "additional_data", coerced)

    def safe_dict(self, *, mask_keys: tuple[str, ...] | None = None) -> dict[str, Any]:
        """Export context as dict with masking.

        Args:
            mask_keys: Fields to exclude from output. Defaults to SAFE_DICT_MASK_KEYS.

        Returns:
            Dictionary with masked fields and guaranteed additional_data key.

        Example:
            >>> context = ErrorContext(subscriber_id="abc", fingerprint="users:1")
            >>> context.safe_dict()
            {'fingerprint': 'users:1', 'additional_data': {}}
        """
        if mask_keys is None:
            mask_keys = SAFE_DICT_MASK_KEYS

        data: dict[str, Any] = {}
        if self.fingerprint is not None and "fingerprint" not in mask_keys:
            data["fingerprint"] = self.fingerprint
        if self.operation is not None and "operation" not in mask_keys:
            data["operation"] = self.operation
        if self.subscriber_id is not None and "subscriber_id" not in mask_keys:
            data["subscriber_id"] = self.subscriber_id

        if self.additional_data is not None and "additional_data" not in mask_keys:
            data["additional_data"] = self.additional_data
        else:
            data["additional_data"] = {}

        return data


class CacheSyncError(Exception):
    """Base exception class for all cachesync errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: ErrorContext | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        """Initialize CacheSyncError.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            context: Additional context information
            original_error: Original exception that caused this error
        """
        self.code = code
        self.message = message
        self.context = context or ErrorContext()
        self.original_error = original_error

        formatted_message = f"{code.value}: {message}"
        super().__init__(formatted_message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging.

        Returns:
            Dictionary representation of the error with code, message,
            masked context, and original_error (if present)
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "context": self.context.safe_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }


class DomainError(CacheSyncError):
    """Domain-specific errors.

    These errors occur when a cache-coherence rule is violated or a caller
    supplied function (fetcher, committer, merge resolver) fails.
    """


class InfrastructureError(CacheSyncError):
    """Infrastructure-related errors.

    These errors occur when interacting with external systems such as the
    persistence database or the file system.
    """


class ApplicationError(CacheSyncError):
    """Application-level errors.

    Invalid arguments, configuration errors and use of a closed engine.
    """


class FetchError(DomainError):
    """A fetcher failed (network or server failure during read)."""


class CommitError(DomainError):
    """A committer failed (network or server failure during mutation)."""


class CommitTimeoutError(CommitError, TimeoutError):
    """A commit did not settle within its rollback timeout.

    Always terminal for the attempt: it triggers rollback and is never
    retried. Also catchable as the builtin ``TimeoutError``.
    """


class QueueCapacityError(DomainError):
    """The offline queue is full (reject-new policy) or evicted an item."""


class ConflictError(DomainError):
    """The drain-time merge resolver itself failed."""


class CliError(ApplicationError):
    """CLI-specific error carrying the process exit code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: ErrorContext | None = None,
        original_error: BaseException | None = None,
        command: str | None = None,
        exit_code: int = 1,
    ):
        super().__init__(code, message, context, original_error)
        self.command = command
        self.exit_code = exit_code


# Convenience functions for common error scenarios
def create_fetch_error(
    fingerprint: str,
    message: str,
    original_error: BaseException | None = None,
    attempts: int | None = None,
) -> FetchError:
    """Create a fetch error with context."""
    context = ErrorContext(
        fingerprint=fingerprint,
        operation="fetch",
        additional_data={"attempts": attempts},
    )
    return FetchError(ErrorCode.FETCH_FAILED, message, context, original_error)


def create_commit_error(
    fingerprint: str,
    message: str,
    mutation_id: str | None = None,
    original_error: BaseException | None = None,
    attempts: int | None = None,
) -> CommitError:
    """Create a commit error with context."""
    context = ErrorContext(
        fingerprint=fingerprint,
        operation="commit",
        additional_data={"mutation_id": mutation_id, "attempts": attempts},
    )
    return CommitError(ErrorCode.COMMIT_FAILED, message, context, original_error)


def create_validation_error(
    message: str,
    field: str | None = None,
    operation: str | None = None,
    original_error: BaseException | None = None,
) -> ApplicationError:
    """Create a validation error with context."""
    context = ErrorContext(
        operation=operation,
        additional_data={"field": field},
    )
    return ApplicationError(
        ErrorCode.VALIDATION_ERROR,
        message,
        context,
        original_error,
    )


def create_config_error(
    message: str,
    config_key: str | None = None,
    operation: str | None = None,
    original_error: BaseException | None = None,
) -> ApplicationError:
    """Create a configuration error with context."""
    context = ErrorContext(
        operation=operation,
        additional_data={"config_key": config_key},
    )
    return ApplicationError(
        ErrorCode.CONFIG_ERROR,
        message,
        context,
        original_error,
    )


def create_persistence_error(
    message: str,
    db_path: str | Path | None = None,
    operation: str | None = None,
    code: ErrorCode = ErrorCode.PERSISTENCE_ERROR,
    original_error: BaseException | None = None,
) -> InfrastructureError:
    """Create a persistence error with context."""
    context = ErrorContext(
        operation=operation,
        additional_data={"db_path": db_path},
    )
    return InfrastructureError(code, message, context, original_error)


def create_cli_error(
    message: str,
    command: str | None = None,
    original_error: BaseException | None = None,
    exit_code: int = 1,
) -> CliError:
    """Create a CLI error with context."""
    context = ErrorContext(
        operation="cli",
        additional_data={"command": command},
    )
    return CliError(
        ErrorCode.CLI_COMMAND_FAILED,
        message,
        context,
        original_error,
        command,
        exit_code,
    )
