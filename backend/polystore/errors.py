"""
Error taxonomy and boundary translation.

Every repository operation raises only members of a fixed taxonomy:

- NotFoundError
- ValidationError
- CreateError / UpdateError / DeleteError
- OperationNotImplementedError
- UnauthorizedError

plus ProjectionNotAvailableError for event-log listings served from a cache
that is not ready yet. Backend-native exceptions are caught at the strategy
boundary by ``translate_errors`` and re-raised as the taxonomy kind of the
operation; the native exception is kept as ``__cause__`` for audit logging.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, TypeVar

from .logging_config import create_log_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorKind(str, Enum):
    """Taxonomy kinds shared by every backend."""
    NOT_FOUND = "notFound"
    VALIDATION = "validationError"
    CREATE = "createError"
    UPDATE = "updateError"
    DELETE = "deleteError"
    NOT_IMPLEMENTED = "notImplemented"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "projectionNotAvailable"


_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.DEBUG,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class PolystoreError(Exception):
    """Base exception for polystore errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class SchemaError(PolystoreError):
    """Invalid or inconsistent data model definition."""

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if entity:
            details["entity"] = entity

        super().__init__(
            message=message,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            details=details,
            **kwargs,
        )


class ConnectorError(PolystoreError):
    """Raised by connectors for backend faults that have no native exception type."""

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if backend:
            details["backend"] = backend

        super().__init__(
            message=message,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs,
        )


@dataclass(frozen=True)
class ErrorEntry:
    """
    One stable error definition of an entity.

    The ``(code, message, severity)`` tuple is what callers see, whichever
    backend raised it.
    """
    key: str
    code: str
    message: str
    kind: ErrorKind
    status_code: int
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "code": self.code,
            "message": self.message,
            "description": self.description,
            "kind": self.kind.value,
            "status_code": self.status_code,
            "severity": self.severity.value,
        }


class DomainError(PolystoreError):
    """
    Base class of the repository error taxonomy.

    Attributes:
        key: Catalog key (``notFound``, ``CustomerNotFound``...)
        code: Stable machine readable code
        context: Operation context ``{component, operation, subject_key, user}``
    """

    kind: ErrorKind = ErrorKind.NOT_FOUND
    default_status: int = 500
    default_severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        key: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        severity = kwargs.pop("severity", None) or self.default_severity
        super().__init__(message=message, severity=severity, **kwargs)
        self.key = key or self.kind.value
        self.code = code or self.key.upper()
        self.status_code = status_code or self.default_status
        self.context = context or {}

    @classmethod
    def from_entry(
        cls,
        entry: ErrorEntry,
        context: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> "DomainError":
        """Instantiate the taxonomy class matching ``entry.kind``."""
        error_cls = _KIND_CLASSES.get(entry.kind, DomainError)
        return error_cls(
            message=entry.message,
            key=entry.key,
            code=entry.code,
            status_code=entry.status_code,
            severity=entry.severity,
            context=context,
            details=details,
        )

    @property
    def error_tuple(self) -> tuple[str, str, str]:
        return self.code, self.message, self.severity.value

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "key": self.key,
            "code": self.code,
            "kind": self.kind.value,
            "status_code": self.status_code,
            "context": self.context,
        })
        return data


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND
    default_status = 404
    default_severity = ErrorSeverity.LOW


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION
    default_status = 400
    default_severity = ErrorSeverity.LOW


class CreateError(DomainError):
    kind = ErrorKind.CREATE
    default_status = 400


class UpdateError(DomainError):
    kind = ErrorKind.UPDATE
    default_status = 400


class ConcurrencyConflictError(UpdateError):
    """A save was attempted against a stale expected revision."""
    default_status = 409

    def __init__(
        self,
        message: str,
        expected_revision: int | None = None,
        actual_revision: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if expected_revision is not None:
            details["expected_revision"] = expected_revision
        if actual_revision is not None:
            details["actual_revision"] = actual_revision
        kwargs.setdefault("key", "concurrencyConflict")
        super().__init__(message=message, details=details, **kwargs)


class DeleteError(DomainError):
    kind = ErrorKind.DELETE
    default_status = 400


class OperationNotImplementedError(DomainError):
    kind = ErrorKind.NOT_IMPLEMENTED
    default_status = 501
    default_severity = ErrorSeverity.LOW


class UnauthorizedError(DomainError):
    kind = ErrorKind.UNAUTHORIZED
    default_status = 401
    default_severity = ErrorSeverity.LOW


class ProjectionNotAvailableError(DomainError):
    kind = ErrorKind.UNAVAILABLE
    default_status = 503


_KIND_CLASSES: dict[ErrorKind, type[DomainError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CREATE: CreateError,
    ErrorKind.UPDATE: UpdateError,
    ErrorKind.DELETE: DeleteError,
    ErrorKind.NOT_IMPLEMENTED: OperationNotImplementedError,
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.UNAVAILABLE: ProjectionNotAvailableError,
}


@dataclass
class OperationContext:
    """Structured context attached to every repository operation."""
    component: str
    operation: str
    subject_key: str | None = None
    user: str | None = None
    start_time: float = field(default_factory=time.monotonic)

    @property
    def duration_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_dict(self) -> dict[str, Any]:
        return create_log_context(self.component, self.operation, self.subject_key, self.user)


def log_domain_error(error: PolystoreError, context: dict[str, Any] | None = None) -> None:
    """Log an error at the level matching its severity."""
    log_level = _SEVERITY_LOG_LEVELS.get(error.severity, logging.ERROR)
    logger.log(
        log_level,
        f"[{error.severity.value}] {error.message}",
        extra={"context": context or {}, "extra_data": error.details},
    )


def translate_errors(
    operation: str,
    kind: ErrorKind,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for repository operations.

    The decorated coroutine must be a method of an object exposing
    ``component`` (str), ``errors`` (an ``ErrorCatalog``) and
    ``subject_key(value)``. Taxonomy errors propagate unchanged apart from
    having the operation context attached; anything else is logged and
    re-raised as the catalog entry for ``kind``.

    Args:
        operation: Operation name recorded in the context
        kind: Taxonomy kind used for unexpected exceptions

    Returns:
        Decorated coroutine function
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(self: Any, user: Any, *args: Any, **kwargs: Any) -> T:
            context = OperationContext(
                component=self.component,
                operation=operation,
                subject_key=self.subject_key(args[0]) if args else None,
                user=getattr(user, "sub", None) if user is not None else None,
            )

            try:
                return await func(self, user, *args, **kwargs)

            except DomainError as e:
                if not e.context:
                    e.context = context.to_dict()
                log_domain_error(e, e.context)
                raise

            except Exception as e:
                wrapped = self.errors.error(
                    kind.value,
                    context=context.to_dict(),
                    details={
                        "original_type": type(e).__name__,
                        "duration_ms": round(context.duration_ms, 2),
                    },
                )
                wrapped.severity = ErrorSeverity.HIGH
                logger.error(
                    f"{context.component}.{operation} failed: {type(e).__name__}: {e}",
                    extra={"context": context.to_dict()},
                )
                raise wrapped from e

        return wrapper

    return decorator

