"""Tests for NotificationDispatcher.

Covers:
- Message rendering
- Delivery to the paired account's own JID
- Best-effort error handling
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from linkvault.config import NotificationsConfig
from linkvault.notifications import NotificationDispatcher, render_message

LOCATOR = "TAG~abc123#def456"


@pytest.fixture
def socket():
    """Mock socket for a freshly paired account."""
    socket = MagicMock()
    socket.user_jid = "15551234567:12@s.whatsapp.net"
    socket.send_message = AsyncMock()
    return socket


@pytest.fixture
def dispatcher():
    return NotificationDispatcher(template="Session: {locator}", message_gap=0)


class TestRenderMessage:
    """Tests for template rendering."""

    def test_placeholders(self):
        text = render_message("{session_id} -> {locator}", LOCATOR, "SESS_abc")

        assert text == "SESS_abc -> TAG~abc123#def456"

    def test_unknown_placeholders_are_kept(self):
        text = render_message("{locator} {unknown}", LOCATOR, "SESS_abc")

        assert text == "TAG~abc123#def456 {unknown}"

    def test_literal_braces_from_markdown(self):
        """Templates with stray braces still render."""
        text = render_message("```{locator}``` {", LOCATOR, "SESS_abc")

        assert "TAG~abc123#def456" in text


class TestNotify:
    """Tests for notify()."""

    @pytest.mark.asyncio
    async def test_sends_message_then_bare_locator(self, dispatcher, socket):
        sent = await dispatcher.notify(socket, LOCATOR, "SESS_abc")

        assert sent is True
        assert socket.send_message.await_args_list[0].args == (
            "15551234567@s.whatsapp.net",
            "Session: TAG~abc123#def456",
        )
        assert socket.send_message.await_args_list[1].args == (
            "15551234567@s.whatsapp.net",
            LOCATOR,
        )

    @pytest.mark.asyncio
    async def test_single_message_when_locator_alone_disabled(self, socket):
        dispatcher = NotificationDispatcher(template="{locator}", send_locator_alone=False)

        await dispatcher.notify(socket, LOCATOR, "SESS_abc")

        socket.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled(self, socket):
        dispatcher = NotificationDispatcher(enabled=False)

        assert await dispatcher.notify(socket, LOCATOR, "SESS_abc") is False
        socket.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_jid(self, dispatcher, socket):
        socket.user_jid = None

        assert await dispatcher.notify(socket, LOCATOR, "SESS_abc") is False
        socket.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_is_not_raised(self, dispatcher, socket):
        socket.send_message.side_effect = RuntimeError("connection closed")

        assert await dispatcher.notify(socket, LOCATOR, "SESS_abc") is False

    def test_from_config(self):
        config = NotificationsConfig(enabled=False, template="{locator}", message_gap=0.5)

        dispatcher = NotificationDispatcher.from_config(config)

        assert dispatcher._enabled is False
        assert dispatcher._template == "{locator}"
        assert dispatcher._message_gap == 0.5
