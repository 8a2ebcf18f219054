"""Notification delivery.

The evaluators only see the ``Notifier`` protocol. ``SmtpNotifier`` sends
plain-text email from a fixed sender address; ``DryRunNotifier`` logs the
message instead of sending it.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_SMTP_TIMEOUT_SECONDS = 10.0


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""

    def __init__(self, message: str, recipient: str | None = None) -> None:
        super().__init__(message)
        self.recipient = recipient


class Notifier(Protocol):
    """Delivers one message to one recipient.

    Implementations raise NotificationError on delivery failure and give
    no retry or queuing guarantees.
    """

    async def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpNotifier:
    """Email notifier over SMTP.

    smtplib is blocking, so delivery runs in a worker thread.

    Example:
        ```python
        notifier = SmtpNotifier("smtp.example.com", 587, from_address="alerts@example.com")
        await notifier.send("user@example.com", "ethereum Price Alert", "...")
        ```
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        from_address: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = DEFAULT_SMTP_TIMEOUT_SECONDS,
    ) -> None:
        self._host = host
        self._port = port
        self._from_address = from_address
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @property
    def from_address(self) -> str:
        return self._from_address

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = to
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> None:
        msg = self.build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to deliver email to %s (%s): %s", to, subject, e)
            raise NotificationError(f"Failed to deliver email to {to}: {e}", recipient=to) from e
        logger.info("Email delivered to %s: %s", to, subject)


class DryRunNotifier:
    """Notifier that only logs what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))
        logger.info("[DRY RUN] Would send email: to=%s, subject=%s", to, subject)
