"""
Tests for the diff + rate gate in front of the status sink.
"""

from lyricstatus.services.gate import UpdateGate, GateState

from conftest import FakeClock


class TestUpdateGate:
    """Diff check first, then the interval check."""

    def test_diff_then_rate_sequence(self):
        """A throttled line is remembered as seen and not sent later."""
        clock = FakeClock(0)
        gate = UpdateGate(threshold_ms=1000, clock=clock)

        assert gate.should_emit("A") is True

        clock.now = 100
        assert gate.should_emit("A") is False

        clock.now = 200
        assert gate.should_emit("B") is False
        assert gate.state.last_emitted_text == "B"

        clock.now = 1000
        assert gate.should_emit("B") is False

    def test_interval_boundary_inclusive(self):
        clock = FakeClock(0)
        gate = UpdateGate(threshold_ms=1000, clock=clock)
        assert gate.should_emit("A")
        clock.now = 1000
        assert gate.should_emit("B")
        assert gate.state.last_emit_time == 1000

    def test_rejected_interval_does_not_stamp(self):
        clock = FakeClock(0)
        gate = UpdateGate(threshold_ms=1000, clock=clock)
        gate.should_emit("A")
        clock.now = 500
        gate.should_emit("B")
        assert gate.state.last_emit_time == 0

    def test_first_emit_at_time_zero_allowed(self):
        gate = UpdateGate(threshold_ms=1000, clock=FakeClock(0))
        assert gate.should_emit("first")

    def test_reset_clears_both_cursors(self):
        clock = FakeClock(0)
        gate = UpdateGate(threshold_ms=1000, clock=clock)
        gate.should_emit("A")
        gate.reset()
        assert gate.state == GateState()

        clock.now = 10
        assert gate.should_emit("A") is True

    def test_zero_threshold_only_diffs(self):
        clock = FakeClock(0)
        gate = UpdateGate(threshold_ms=0, clock=clock)
        assert gate.should_emit("A")
        assert gate.should_emit("B")
        assert not gate.should_emit("B")

    def test_shared_state_object(self):
        state = GateState()
        gate = UpdateGate(threshold_ms=1000, clock=FakeClock(5), state=state)
        gate.should_emit("X")
        assert state.last_emitted_text == "X"
        assert state.last_emit_time == 5
