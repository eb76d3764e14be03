from __future__ import annotations

from typing import Optional


class WorkoutLogError(Exception):
    """Base error. Carries enough context to rebuild the failing call."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        owner: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.owner = owner
        self.key = key

    def bind(
        self,
        *,
        operation: Optional[str] = None,
        owner: Optional[str] = None,
        key: Optional[str] = None,
    ) -> "WorkoutLogError":
        # Only fills what the raiser did not know.
        if self.operation is None:
            self.operation = operation
        if self.owner is None:
            self.owner = owner
        if self.key is None:
            self.key = key
        return self

    def __str__(self) -> str:
        ctx = []
        if self.operation is not None:
            ctx.append(f"operation={self.operation}")
        if self.owner is not None:
            ctx.append(f"owner={self.owner!r}")
        if self.key is not None:
            ctx.append(f"key={self.key!r}")
        if not ctx:
            return self.message
        return f"{self.message} ({', '.join(ctx)})"


class InvalidFieldError(WorkoutLogError, ValueError):
    def __init__(self, field: str, message: str, **ctx: Optional[str]) -> None:
        super().__init__(f"{field}: {message}", **ctx)
        self.field = field


class MalformedKeyError(WorkoutLogError):
    """Stored data does not match a recognised key shape."""


class StorageUnavailableError(WorkoutLogError):
    cancelled = False


class StorageCancelledError(StorageUnavailableError):
    cancelled = True
