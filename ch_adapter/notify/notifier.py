"""
Error notification delivery.

Notifications are best-effort: a notifier raises NotificationError when
delivery fails, and the reconciliation cycle logs and swallows it.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

from config.settings import NotificationConfig

logger = logging.getLogger(__name__)

MESSAGE_PREFIX = "The Clearinghouse Adapter has generated the following notification:"


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""
    pass


def format_message(message: str) -> str:
    """Notification body for an error message."""
    return f"{MESSAGE_PREFIX}\n{message}"


class Notifier(ABC):
    """Abstract notifier interface."""

    @abstractmethod
    def send(self, message: str) -> None:
        """
        Deliver a notification.

        Raises:
            NotificationError: If delivery fails
        """


class LogNotifier(Notifier):
    """Writes notifications to the log; used when SMTP is not configured."""

    def send(self, message: str) -> None:
        logger.warning(format_message(message))


class EmailNotifier(Notifier):
    """
    Send plain-text notifications via SMTP.

    Usage:
        notifier = EmailNotifier(settings.notification)
        notifier.send("Encountered 2 errors while importing trip tickets: ...")
    """

    def __init__(self, config: NotificationConfig, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    def send(self, message: str) -> None:
        if not self.config.smtp_host:
            raise NotificationError("SMTP host not configured, cannot send notification")
        if not self.config.recipients:
            raise NotificationError("Notification 'to' address not configured, cannot send notification")

        email = EmailMessage()
        email["Subject"] = self.config.subject
        email["From"] = self.config.sender
        email["To"] = ", ".join(self.config.recipients)
        email.set_content(format_message(message))

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout) as client:
                if self.config.starttls:
                    client.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    client.login(self.config.smtp_user, self.config.smtp_password)
                client.send_message(email)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Notification email failed: {e}")
            raise NotificationError(f"Could not send notification email: {e}") from e

        logger.info(f"Notification sent to {', '.join(self.config.recipients)}")
