"""Domain models for the notification task queue."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from mailqueue.queue.errors import InvalidTaskError

DEFAULT_MAX_ATTEMPTS = 3


class TaskKind(str, Enum):
    """Closed set of notification categories, one delivery template each."""

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    NOTIFICATION = "notification"


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


@dataclass(slots=True)
class TaskCreate:
    """Validated input for inserting one task."""

    kind: TaskKind
    recipient: str
    owner_ref: int | None
    payload: bytes
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @classmethod
    def build(
        cls,
        *,
        kind: TaskKind | str,
        recipient: str,
        owner_ref: int | None,
        payload: bytes,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> TaskCreate:
        """Validate producer input; raise InvalidTaskError on bad values."""

        return cls(
            kind=parse_kind(kind),
            recipient=_validate_recipient(recipient),
            owner_ref=owner_ref,
            payload=_validate_payload(payload),
            max_attempts=_validate_max_attempts(max_attempts),
        )


@dataclass(slots=True)
class TaskView:
    """Readable task snapshot for the worker, delivery and CLI.

    ``kind`` is always a ``TaskKind`` on claimed tasks. Inspection reads
    (``get_task``, ``list_tasks``) return the raw stored string for a row
    whose kind is outside the known set.
    """

    id: int
    kind: TaskKind | str
    recipient: str
    owner_ref: int | None
    payload: bytes
    attempts: int
    max_attempts: int
    status: TaskStatus
    last_error: str | None
    created_at: datetime
    processed_at: datetime | None
    next_eligible_at: datetime
    claimed_at: datetime | None = None


def parse_kind(value: TaskKind | str) -> TaskKind:
    if isinstance(value, TaskKind):
        return value
    try:
        return TaskKind(value)
    except ValueError as error:
        allowed = ", ".join(kind.value for kind in TaskKind)
        raise InvalidTaskError(f"Unknown task kind {value!r}; expected one of: {allowed}") from error


def encode_payload(data: Mapping[str, Any]) -> bytes:
    """Serialize producer data into the opaque payload blob."""

    try:
        return json.dumps(dict(data), ensure_ascii=False, sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as error:
        raise InvalidTaskError(f"Payload is not JSON serializable: {error}") from error


def decode_payload(payload: bytes) -> dict[str, Any]:
    """Parse a JSON payload blob back into a mapping."""

    parsed = json.loads(payload.decode("utf-8")) if payload else {}
    if not isinstance(parsed, dict):
        raise ValueError(f"Payload must be a JSON object, got {type(parsed).__name__}")
    return parsed


def _validate_recipient(recipient: str) -> str:
    normalized = recipient.strip() if isinstance(recipient, str) else ""
    if not normalized:
        raise InvalidTaskError("Recipient must be a non-empty string.")
    return normalized


def _validate_payload(payload: bytes) -> bytes:
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise InvalidTaskError(
            f"Payload must be serialized bytes, got {type(payload).__name__}; "
            "use encode_payload() for mappings.",
        )
    return bytes(payload)


def _validate_max_attempts(max_attempts: int) -> int:
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1:
        raise InvalidTaskError(f"max_attempts must be a positive integer, got {max_attempts!r}")
    return max_attempts
