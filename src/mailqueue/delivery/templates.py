"""Message templates for each task kind."""

from __future__ import annotations

import html
from collections.abc import Mapping
from dataclasses import dataclass
from string import Formatter
from typing import Any

from mailqueue.delivery.base import DeliveryError
from mailqueue.queue.models import TaskKind


@dataclass(frozen=True, slots=True)
class EmailTemplate:
    """Subject line and HTML body with ``{field}`` placeholders."""

    subject: str
    body: str

    def required_fields(self) -> set[str]:
        return {
            field_name
            for _, field_name, _, _ in Formatter().parse(self.body)
            if field_name
        }


_VERIFICATION_BODY = """\
<html>
<body>
<p>Hello, {name}!</p>
<p>Thanks for signing up. Please confirm your email address:</p>
<p><a href="{verification_url}">{verification_url}</a></p>
<p>The link is valid for 24 hours.</p>
</body>
</html>
"""

_PASSWORD_RESET_BODY = """\
<html>
<body>
<p>Hello, {name}!</p>
<p>We received a request to reset your password. Follow the link to choose a new one:</p>
<p><a href="{reset_url}">{reset_url}</a></p>
<p>If you did not request a reset, ignore this message.</p>
</body>
</html>
"""

_NOTIFICATION_BODY = """\
<html>
<body>
<p>Hello, {name}!</p>
<p>{message}</p>
</body>
</html>
"""

DEFAULT_TEMPLATES: dict[TaskKind, EmailTemplate] = {
    TaskKind.VERIFICATION: EmailTemplate(
        subject="Confirm your email",
        body=_VERIFICATION_BODY,
    ),
    TaskKind.PASSWORD_RESET: EmailTemplate(
        subject="Password reset",
        body=_PASSWORD_RESET_BODY,
    ),
    TaskKind.NOTIFICATION: EmailTemplate(
        subject="Notification",
        body=_NOTIFICATION_BODY,
    ),
}


def ensure_exhaustive(templates: Mapping[TaskKind, EmailTemplate]) -> None:
    """Raise if any task kind has no template."""

    missing = [kind.value for kind in TaskKind if kind not in templates]
    if missing:
        raise RuntimeError(f"No email template for task kind(s): {', '.join(missing)}")


def render(template: EmailTemplate, data: Mapping[str, Any]) -> str:
    """Render the HTML body, escaping every substituted value."""

    missing = sorted(template.required_fields() - set(data))
    if missing:
        raise DeliveryError(f"Payload missing template field(s): {', '.join(missing)}")
    escaped = {key: html.escape(str(value)) for key, value in data.items()}
    return template.body.format_map(escaped)


ensure_exhaustive(DEFAULT_TEMPLATES)
