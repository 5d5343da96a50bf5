"""Tests for protocol-layer helpers."""

import pytest

from linkvault.protocols import (
    ConnectionStatus,
    ConnectionUpdate,
    DisconnectReason,
    load_socket_factory,
    normalize_jid,
)


class TestNormalizeJid:
    """Tests for device suffix stripping."""

    def test_strips_device_suffix(self):
        assert normalize_jid("15551234567:12@s.whatsapp.net") == "15551234567@s.whatsapp.net"

    def test_plain_jid_unchanged(self):
        assert normalize_jid("15551234567@s.whatsapp.net") == "15551234567@s.whatsapp.net"

    def test_bare_number_gets_user_server(self):
        assert normalize_jid("15551234567:3") == "15551234567@s.whatsapp.net"


class TestConnectionUpdate:
    def test_logged_out_close(self):
        update = ConnectionUpdate(
            connection=ConnectionStatus.CLOSE, status_code=DisconnectReason.LOGGED_OUT
        )
        assert update.is_logged_out

    def test_other_close_is_not_logged_out(self):
        update = ConnectionUpdate(
            connection=ConnectionStatus.CLOSE, status_code=DisconnectReason.RESTART_REQUIRED
        )
        assert not update.is_logged_out

    def test_401_without_close_is_not_logged_out(self):
        assert not ConnectionUpdate(status_code=401).is_logged_out


class TestLoadSocketFactory:
    """Tests for resolving "module:callable" factory names."""

    def test_resolves_callable(self):
        factory = load_socket_factory("tests.fakes:FakeSocketFactory")

        from tests.fakes import FakeSocketFactory

        assert factory is FakeSocketFactory

    @pytest.mark.parametrize("value", ["tests.fakes", ":make", "tests.fakes:"])
    def test_malformed_name(self, value):
        with pytest.raises(ValueError):
            load_socket_factory(value)

    def test_not_callable(self):
        with pytest.raises(ValueError):
            load_socket_factory("tests.fakes:PAIRED_JID")

    def test_missing_module(self):
        with pytest.raises(ImportError):
            load_socket_factory("linkvault_no_such_module:make")
