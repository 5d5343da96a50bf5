"""Confirmation messages sent to a freshly paired account."""

from .dispatcher import NotificationDispatcher, render_message

__all__ = [
    "NotificationDispatcher",
    "render_message",
]
