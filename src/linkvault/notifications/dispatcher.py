"""Notification dispatcher for archived session locators."""

import asyncio
import logging
from typing import Optional

from linkvault.config import DEFAULT_NOTIFICATION_TEMPLATE, NotificationsConfig
from linkvault.logging import short_id
from linkvault.protocols import WhatsAppSocket, normalize_jid

logger = logging.getLogger(__name__)


def render_message(template: str, locator: str, session_id: str) -> str:
    """Fill the {locator} and {session_id} placeholders.

    Unknown placeholders are left as they are rather than failing the send.
    """
    try:
        return template.format(locator=locator, session_id=session_id).strip()
    except (KeyError, IndexError, ValueError):
        return template.replace("{locator}", locator).replace("{session_id}", session_id).strip()


class NotificationDispatcher:
    """Sends the archived locator to the account that was just paired.

    Best effort: the credential artifact is already archived when this runs,
    so a failed send is logged and reported but never raised.

    Usage:
        dispatcher = NotificationDispatcher.from_config(config.notifications)
        sent = await dispatcher.notify(socket, locator, session_id)
    """

    def __init__(
        self,
        template: str = DEFAULT_NOTIFICATION_TEMPLATE,
        send_locator_alone: bool = True,
        message_gap: float = 1.0,
        enabled: bool = True,
    ):
        """Initialize NotificationDispatcher.

        Args:
            template: Message template with {locator} / {session_id}.
            send_locator_alone: Follow up with a message holding only the
                locator, easy to copy on a phone.
            message_gap: Seconds between the two messages.
            enabled: Master toggle.
        """
        self._template = template
        self._send_locator_alone = send_locator_alone
        self._message_gap = message_gap
        self._enabled = enabled

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "NotificationDispatcher":
        return cls(
            template=config.template,
            send_locator_alone=config.send_locator_alone,
            message_gap=config.message_gap,
            enabled=config.enabled,
        )

    async def notify(
        self,
        socket: WhatsAppSocket,
        locator: str,
        session_id: str,
    ) -> bool:
        """Send the locator to the socket's own account.

        Returns:
            True if every message was sent.
        """
        if not self._enabled:
            return False

        jid: Optional[str] = socket.user_jid
        if not jid:
            logger.warning(f"No account JID for {short_id(session_id)}, skipping notification")
            return False

        address = normalize_jid(jid)
        try:
            await socket.send_message(address, render_message(self._template, locator, session_id))
            if self._send_locator_alone:
                await asyncio.sleep(self._message_gap)
                await socket.send_message(address, locator)
        except Exception as e:
            logger.warning(f"Failed to notify {short_id(session_id)}: {e}")
            return False

        logger.info(f"Locator sent to paired account for {short_id(session_id)}")
        return True
