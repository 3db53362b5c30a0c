"""Development delivery backend that logs messages instead of sending them."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LogTransport:
    """Message transport writing rendered messages to the log."""

    def send(self, *, to: str, subject: str, html_body: str) -> None:
        logger.info("Would send email to=%s subject=%r (%d chars)", to, subject, len(html_body))
        logger.debug("Email body for %s:\n%s", to, html_body)
