"""Delivery backends for queued notification tasks."""

from mailqueue.config import Settings
from mailqueue.delivery.base import Delivery, DeliveryError, MessageTransport
from mailqueue.delivery.email import EmailDelivery
from mailqueue.delivery.log_backend import LogTransport
from mailqueue.delivery.smtp import SmtpTransport

__all__ = [
    "Delivery",
    "DeliveryError",
    "EmailDelivery",
    "LogTransport",
    "MessageTransport",
    "SmtpTransport",
    "build_delivery",
]


def build_delivery(settings: Settings) -> EmailDelivery:
    """Email delivery over the transport selected by MAILQUEUE_DELIVERY_BACKEND."""

    if settings.delivery_backend == "log":
        return EmailDelivery(LogTransport())
    return EmailDelivery(SmtpTransport(settings.smtp))
