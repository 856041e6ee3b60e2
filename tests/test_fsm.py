"""Tests for the relay session state machine."""

from __future__ import annotations

import pytest

from wsbridge.relay.fsm import (
    INTERNAL_ERROR_CLOSE_CODE,
    AbortDial,
    Closed,
    ConnectionState,
    DialFailed,
    DialStarted,
    Errored,
    Forward,
    ForwardingDropped,
    Frame,
    FrameType,
    MessageReceived,
    Opened,
    RequestClose,
    SessionSnapshot,
    SessionState,
    Side,
    transition,
)


def run(events, snap=None):
    """Feed events through the state machine, collecting all effects."""
    snap = snap or SessionSnapshot()
    effects = []
    for event in events:
        snap, new_effects = transition(snap, event)
        effects.extend(new_effects)
    return snap, effects


def active():
    snap, effects = run([DialStarted(), Opened(Side.OUTBOUND)])
    assert effects == []
    return snap


class TestLifecycle:
    """Session state transitions."""

    def test_initial_snapshot(self):
        snap = SessionSnapshot()
        assert snap.state is SessionState.INIT
        assert snap.inbound is ConnectionState.OPEN
        assert snap.outbound is ConnectionState.CONNECTING

    def test_dial_started(self):
        snap, effects = run([DialStarted()])
        assert snap.state is SessionState.DIALING
        assert effects == []

    def test_outbound_open_activates(self):
        snap = active()
        assert snap.state is SessionState.ACTIVE
        assert snap.outbound is ConnectionState.OPEN

    def test_terminated_when_both_closed(self):
        snap, _ = run([Closed(Side.INBOUND, 1000, "bye"), Closed(Side.OUTBOUND, 1000, "")], active())
        assert snap.state is SessionState.TERMINATED
        assert snap.terminated

    def test_closing_after_one_side_closes(self):
        snap, _ = run([Closed(Side.OUTBOUND, 1000, "")], active())
        assert snap.state is SessionState.CLOSING
        assert snap.outbound is ConnectionState.CLOSED
        assert snap.inbound is ConnectionState.CLOSING

    def test_transition_does_not_mutate_input(self):
        snap = active()
        transition(snap, Closed(Side.INBOUND, 1000, ""))
        assert snap.state is SessionState.ACTIVE


class TestMessagePump:
    """Forwarding and the drop policy."""

    @pytest.mark.parametrize("side", [Side.INBOUND, Side.OUTBOUND])
    def test_forward_when_peer_open(self, side):
        frame = Frame(FrameType.BINARY, b"\x00\x01payload")
        _, effects = run([MessageReceived(side, frame)], active())
        assert effects == [Forward(to=side.peer, frame=frame)]

    def test_frame_type_preserved(self):
        text = Frame(FrameType.TEXT, "hello")
        _, effects = run([MessageReceived(Side.INBOUND, text)], active())
        assert effects[0].frame.type is FrameType.TEXT
        assert effects[0].frame.payload == "hello"

    def test_message_before_backend_open_dropped(self):
        """Binary message arriving while dialing is dropped; session stays alive."""
        frame = Frame(FrameType.BINARY, b"early")
        snap, effects = run([DialStarted(), MessageReceived(Side.INBOUND, frame)])
        assert effects == [
            ForwardingDropped(to=Side.OUTBOUND, frame=frame, peer_state=ConnectionState.CONNECTING)
        ]
        assert snap.state is SessionState.DIALING

        snap, effects = run([Opened(Side.OUTBOUND)], snap)
        assert snap.state is SessionState.ACTIVE
        assert effects == []

    def test_message_to_closing_peer_dropped(self):
        frame = Frame(FrameType.TEXT, "late")
        snap, _ = run([Closed(Side.INBOUND, 1000, "")], active())
        _, effects = run([MessageReceived(Side.OUTBOUND, frame)], snap)
        assert isinstance(effects[0], ForwardingDropped)
        assert effects[0].peer_state is ConnectionState.CLOSED

    def test_message_from_closed_side_ignored(self):
        snap, _ = run([Errored(Side.OUTBOUND, "boom")], active())
        _, effects = run([MessageReceived(Side.OUTBOUND, Frame(FrameType.TEXT, "x"))], snap)
        assert effects == []

    def test_order_preserved_within_direction(self):
        frames = [Frame(FrameType.BINARY, bytes([i])) for i in range(5)]
        _, effects = run([MessageReceived(Side.INBOUND, f) for f in frames], active())
        assert [e.frame for e in effects] == frames


class TestTermination:
    """Close and error propagation."""

    @pytest.mark.parametrize("side", [Side.INBOUND, Side.OUTBOUND])
    def test_graceful_close_propagates_code_and_reason(self, side):
        _, effects = run([Closed(side, 4000, "custom reason")], active())
        assert effects == [RequestClose(side=side.peer, code=4000, reason="custom reason")]

    def test_close_propagated_exactly_once(self):
        _, effects = run(
            [
                Closed(Side.INBOUND, 1000, "bye"),
                Closed(Side.INBOUND, 1000, "bye"),
                Errored(Side.INBOUND, "late error"),
            ],
            active(),
        )
        assert effects == [RequestClose(Side.OUTBOUND, 1000, "bye")]

    def test_peer_close_after_requested_close_is_noop(self):
        snap, effects = run(
            [Closed(Side.INBOUND, 1001, "going away"), Closed(Side.OUTBOUND, 1001, "going away")],
            active(),
        )
        assert effects == [RequestClose(Side.OUTBOUND, 1001, "going away")]
        assert snap.terminated

    @pytest.mark.parametrize("side", [Side.INBOUND, Side.OUTBOUND])
    def test_error_closes_peer_with_internal_error(self, side):
        _, effects = run([Errored(side, "connection reset")], active())
        assert len(effects) == 1
        assert effects[0].side is side.peer
        assert effects[0].code == INTERNAL_ERROR_CLOSE_CODE == 1011
        assert effects[0].reason == f"{side.label} error"

    def test_dial_failure_closes_inbound(self):
        snap, effects = run([DialStarted(), DialFailed("connection refused")])
        assert effects == [RequestClose(Side.INBOUND, 1011, "Backend connection failed")]
        assert snap.outbound is ConnectionState.CLOSED
        assert snap.inbound is ConnectionState.CLOSING

        snap, effects = run([Closed(Side.INBOUND, 1011, "Backend connection failed")], snap)
        assert effects == []
        assert snap.terminated

    def test_inbound_close_while_dialing_aborts_dial(self):
        snap, effects = run([DialStarted(), Closed(Side.INBOUND, 1000, "")])
        assert effects == [AbortDial(reason="")]
        assert Side.OUTBOUND in snap.close_requested

        snap, effects = run([DialFailed("dial aborted")], snap)
        assert effects == []
        assert snap.terminated

    def test_backend_opening_after_client_left_is_closed(self):
        snap, _ = run([DialStarted(), Closed(Side.INBOUND, 4001, "client left")])
        snap, effects = run([Opened(Side.OUTBOUND)], snap)
        assert effects == [RequestClose(Side.OUTBOUND, 4001, "client left")]
        assert snap.outbound is ConnectionState.CLOSING

    def test_dial_failed_after_outbound_closed_ignored(self):
        snap, _ = run([Closed(Side.OUTBOUND, 1000, "")], active())
        _, effects = run([DialFailed("late")], snap)
        assert effects == []
