"""Durable notification task queue.

The queue owns the task lifecycle (enqueue, claim, complete, fail) and
nothing else. Delivery is injected into the worker, persistence is injected
into the queue: ``SqlTaskStore`` for SQLite/PostgreSQL, ``InMemoryTaskStore``
for tests and embedding.
"""

from mailqueue.queue.errors import InvalidTaskError, TaskStoreError, UnknownTaskKindError
from mailqueue.queue.memory_store import InMemoryTaskStore
from mailqueue.queue.models import TaskKind, TaskStatus, TaskView, encode_payload
from mailqueue.queue.service import TaskQueue
from mailqueue.queue.sql_store import SqlTaskStore

__all__ = [
    "InMemoryTaskStore",
    "InvalidTaskError",
    "SqlTaskStore",
    "TaskKind",
    "TaskQueue",
    "TaskStatus",
    "TaskStoreError",
    "TaskView",
    "UnknownTaskKindError",
    "encode_payload",
]
