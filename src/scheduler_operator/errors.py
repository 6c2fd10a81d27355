"""Error taxonomy shared by the store adapter and the reconciler."""

from __future__ import annotations

from dataclasses import dataclass


class SchedulerOperatorError(Exception):
    """Base class for all operator errors."""


class ConfigError(SchedulerOperatorError):
    """Raised when the operator configuration is invalid."""


class StoreError(SchedulerOperatorError):
    """Transient store failure (network, timeout, server error). Retryable."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The requested object does not exist."""


class AlreadyExistsError(StoreError):
    """A create was rejected because the object already exists."""


class ConflictError(StoreError):
    """A write was rejected because the object changed since it was read."""


class ReconcileCancelled(SchedulerOperatorError):
    """The invocation was cancelled or ran past its deadline. Retryable."""


@dataclass(frozen=True)
class ChildError:
    """A failure recorded against one managed child during a reconciliation pass."""

    child: str
    operation: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation} {self.child}: {self.message}"
