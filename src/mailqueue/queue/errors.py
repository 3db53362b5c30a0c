"""Queue error taxonomy."""

from __future__ import annotations


class TaskStoreError(RuntimeError):
    """The task store could not complete an operation (unavailable, locked, broken)."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"Task store {operation} failed: {message}")
        self.operation = operation


class InvalidTaskError(ValueError):
    """Producer input rejected before reaching the store."""


class UnknownTaskKindError(RuntimeError):
    """A stored task carries a kind outside the known set.

    Raised after the task has been claimed, so the caller owns it and must
    resolve it through ``fail``.
    """

    def __init__(self, *, task_id: int, kind: str, attempts: int, max_attempts: int) -> None:
        super().__init__(f"Unknown task kind {kind!r} for task_id={task_id}")
        self.task_id = task_id
        self.kind = kind
        self.attempts = attempts
        self.max_attempts = max_attempts
