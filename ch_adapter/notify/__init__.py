"""Notification module."""

from .notifier import EmailNotifier, LogNotifier, NotificationError, Notifier, format_message

__all__ = ["EmailNotifier", "LogNotifier", "NotificationError", "Notifier", "format_message"]
