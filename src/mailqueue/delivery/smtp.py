"""SMTP message transport."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage

from mailqueue.config import SmtpSettings
from mailqueue.delivery.base import DeliveryError


class SmtpTransport:
    """Sends HTML messages through one SMTP connection per message.

    Login happens only when both username and password are set, so a local
    Mailhog works with the defaults.
    """

    def __init__(
        self,
        settings: SmtpSettings,
        *,
        smtp_factory: type[smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.settings = settings
        self._smtp_factory = smtp_factory

    def build_message(self, *, to: str, subject: str, html_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.from_address
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html_body, subtype="html", charset="utf-8")
        return message

    def send(self, *, to: str, subject: str, html_body: str) -> None:
        message = self.build_message(to=to, subject=subject, html_body=html_body)
        try:
            with self._smtp_factory(
                self.settings.host,
                self.settings.port,
                timeout=self.settings.timeout_seconds,
            ) as client:
                if self.settings.starttls:
                    client.starttls()
                if self.settings.username and self.settings.password:
                    client.login(self.settings.username, self.settings.password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as error:
            raise DeliveryError(
                f"SMTP send to {to} via {self.settings.host}:{self.settings.port} failed: {error}",
            ) from error
