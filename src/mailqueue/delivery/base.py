"""Delivery interface for queued notification tasks."""

from __future__ import annotations

from typing import Protocol

from mailqueue.queue.models import TaskView


class DeliveryError(RuntimeError):
    """Expected delivery failure; the worker records it and retries per policy."""


class Delivery(Protocol):
    """Protocol implemented by delivery backends.

    A task may be delivered more than once (retry after a failure whose
    outcome was not recorded), so implementations must tolerate repeats.
    """

    def deliver(self, task: TaskView) -> None:
        """Send the task's message or raise describing why it was not sent."""


class MessageTransport(Protocol):
    """Sends an already rendered message to one recipient."""

    def send(self, *, to: str, subject: str, html_body: str) -> None: ...
