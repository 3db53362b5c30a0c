"""Email delivery: payload decode, template render, transport send."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from mailqueue.delivery.base import DeliveryError, MessageTransport
from mailqueue.delivery.templates import DEFAULT_TEMPLATES, EmailTemplate, ensure_exhaustive, render
from mailqueue.queue.models import TaskKind, TaskView, decode_payload

logger = logging.getLogger(__name__)


class EmailDelivery:
    """Delivers one task as an HTML email chosen by ``task.kind``."""

    def __init__(
        self,
        transport: MessageTransport,
        templates: Mapping[TaskKind, EmailTemplate] = DEFAULT_TEMPLATES,
    ) -> None:
        ensure_exhaustive(templates)
        self.transport = transport
        self.templates = dict(templates)

    def deliver(self, task: TaskView) -> None:
        subject, body = self.render(task)
        self.transport.send(to=task.recipient, subject=subject, html_body=body)
        logger.debug("Email sent task_id=%s kind=%s", task.id, task.kind.value)

    def render(self, task: TaskView) -> tuple[str, str]:
        """Return (subject, html_body) for the task."""

        try:
            data = decode_payload(task.payload)
        except (UnicodeDecodeError, ValueError) as error:
            raise DeliveryError(f"Undecodable payload for task_id={task.id}: {error}") from error
        template = self.templates[task.kind]
        return template.subject, render(template, data)
