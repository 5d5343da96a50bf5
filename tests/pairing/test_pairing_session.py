"""Tests for the pairing session state machine and response latch."""

import asyncio

import pytest

from linkvault.pairing.session import (
    IssuedArtifact,
    PairingMode,
    PairingSession,
    PairingState,
    ResponseLatch,
)


class TestPairingSession:
    """Tests for PairingSession."""

    def test_initial_state(self):
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR)

        assert session.state == PairingState.INIT
        assert session.reconnects == 0
        assert session.locator is None
        assert not session.is_terminal

    def test_happy_path_transitions(self):
        """The code flow walks every state up to DONE."""
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.CODE)

        for state in (
            PairingState.CONNECTING,
            PairingState.CODE_ISSUED,
            PairingState.AUTHENTICATED,
            PairingState.ARCHIVING,
            PairingState.NOTIFYING,
            PairingState.DONE,
        ):
            session.transition_to(state)

        assert session.state == PairingState.DONE
        assert session.is_terminal

    def test_reconnect_loop(self):
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR)
        session.transition_to(PairingState.CONNECTING)
        session.transition_to(PairingState.QR_ISSUED)
        session.transition_to(PairingState.RECONNECTING)
        session.transition_to(PairingState.CONNECTING)
        session.transition_to(PairingState.AUTHENTICATED)

        assert session.state == PairingState.AUTHENTICATED

    def test_invalid_transition_raises(self):
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR)

        with pytest.raises(ValueError, match="Invalid transition"):
            session.transition_to(PairingState.ARCHIVING)

    def test_no_reconnect_after_authentication(self):
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR)
        session.transition_to(PairingState.CONNECTING)
        session.transition_to(PairingState.AUTHENTICATED)

        assert not session.can_transition_to(PairingState.RECONNECTING)

    @pytest.mark.parametrize("terminal", [PairingState.DONE, PairingState.FAILED])
    def test_terminal_states_are_final(self, terminal):
        session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR, state=terminal)

        for state in PairingState:
            assert not session.can_transition_to(state)

    def test_every_state_can_fail(self):
        """FAILED is reachable from every non-terminal state."""
        for state in PairingState:
            session = PairingSession(session_id="SESS_abc", mode=PairingMode.QR, state=state)
            if not session.is_terminal:
                assert session.can_transition_to(PairingState.FAILED)


class TestResponseLatch:
    """Tests for the single-response latch."""

    @pytest.mark.asyncio
    async def test_first_fire_wins(self):
        latch = ResponseLatch()
        first = IssuedArtifact(session_id="s", mode=PairingMode.QR, qr="one")
        second = IssuedArtifact(session_id="s", mode=PairingMode.QR, qr="two")

        assert latch.fire(first) is True
        assert latch.fire(second) is False

        assert latch.fired
        assert latch.attempts == 2
        assert await latch.wait() is first

    @pytest.mark.asyncio
    async def test_wait_blocks_until_fired(self):
        latch = ResponseLatch()
        artifact = IssuedArtifact(session_id="s", mode=PairingMode.CODE, code="ABCD-EFGH")

        waiter = asyncio.create_task(latch.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        latch.fire(artifact)

        assert await waiter is artifact

    def test_unfired_latch(self):
        latch = ResponseLatch()

        assert not latch.fired
        assert latch.artifact is None
