"""Runtime configuration for the queue, worker and delivery backends."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field

from mailqueue.queue.models import DEFAULT_MAX_ATTEMPTS

SUPPORTED_DELIVERY_BACKENDS = ("smtp", "log")
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class QueueSettings:
    """Task defaults and retry policy."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_unit_seconds: float = 60.0


@dataclass(slots=True)
class WorkerSettings:
    """Polling worker settings."""

    worker_id: str = field(default_factory=lambda: _default_worker_id())
    poll_interval_seconds: float = 1.0
    stale_processing_seconds: int = 1_800


@dataclass(slots=True)
class SmtpSettings:
    """SMTP transport settings. Defaults target a local Mailhog."""

    host: str = "localhost"
    port: int = 1025
    username: str = ""
    password: str = ""
    from_address: str = "noreply@mailqueue.local"
    starttls: bool = False
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_url: str = "sqlite:///.mailqueue.db"
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    delivery_backend: str = "smtp"
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)

    @classmethod
    def from_env(cls, db_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_url=db_url or os.getenv("MAILQUEUE_DB_URL", "sqlite:///.mailqueue.db"),
            sqlite_busy_timeout_ms=int(os.getenv("MAILQUEUE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("MAILQUEUE_LOG_LEVEL", "INFO").strip().upper(),
            delivery_backend=os.getenv("MAILQUEUE_DELIVERY_BACKEND", "smtp").strip().lower(),
            queue=QueueSettings(
                max_attempts=int(
                    os.getenv("MAILQUEUE_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS)),
                ),
                backoff_unit_seconds=float(os.getenv("MAILQUEUE_BACKOFF_UNIT_SECONDS", "60")),
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("MAILQUEUE_WORKER_ID", "").strip() or _default_worker_id(),
                poll_interval_seconds=float(
                    os.getenv("MAILQUEUE_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                stale_processing_seconds=int(
                    os.getenv("MAILQUEUE_STALE_PROCESSING_SECONDS", "1800"),
                ),
            ),
            smtp=SmtpSettings(
                host=os.getenv("MAILQUEUE_SMTP_HOST", "localhost"),
                port=int(os.getenv("MAILQUEUE_SMTP_PORT", "1025")),
                username=os.getenv("MAILQUEUE_SMTP_USERNAME", ""),
                password=os.getenv("MAILQUEUE_SMTP_PASSWORD", ""),
                from_address=os.getenv("MAILQUEUE_SMTP_FROM", "noreply@mailqueue.local"),
                starttls=_env_bool("MAILQUEUE_SMTP_STARTTLS", default=False),
                timeout_seconds=float(os.getenv("MAILQUEUE_SMTP_TIMEOUT_SECONDS", "30")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if not self.db_url.strip():
            raise ValueError("MAILQUEUE_DB_URL must not be empty.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid MAILQUEUE_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of: {', '.join(sorted(_LOG_LEVELS))}.",
            )
        if self.delivery_backend not in SUPPORTED_DELIVERY_BACKENDS:
            raise ValueError(
                f"Invalid MAILQUEUE_DELIVERY_BACKEND: {self.delivery_backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_DELIVERY_BACKENDS)}.",
            )
        if self.queue.max_attempts < 1:
            raise ValueError("MAILQUEUE_MAX_ATTEMPTS must be >= 1.")
        if self.queue.backoff_unit_seconds <= 0:
            raise ValueError("MAILQUEUE_BACKOFF_UNIT_SECONDS must be > 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("MAILQUEUE_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.stale_processing_seconds < 0:
            raise ValueError("MAILQUEUE_STALE_PROCESSING_SECONDS must be >= 0.")
        if not 0 < self.smtp.port < 65_536:
            raise ValueError(f"MAILQUEUE_SMTP_PORT out of range: {self.smtp.port}")
        if self.smtp.timeout_seconds <= 0:
            raise ValueError("MAILQUEUE_SMTP_TIMEOUT_SECONDS must be > 0.")


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
