"""
Test Suite: Region Stack
========================

Adjoint depth parity, control frame push/pop discipline, and the effect of
both on the manager's region queries.
"""

import pytest

from qpu_runtime import ProtocolViolation, QuditInfo, RegionStack


@pytest.fixture
def qubits():
    return [QuditInfo(2, i) for i in range(4)]


# =============================================================================
# ADJOINT REGIONS
# =============================================================================

class TestAdjointRegions:
    """Nested adjoint regions cancel in pairs."""

    def test_unmatched_end_adjoint(self):
        with pytest.raises(ProtocolViolation):
            RegionStack().end_adjoint()

    def test_parity_through_nesting(self):
        stack = RegionStack()
        observed = [stack.effective_adjoint()]
        stack.begin_adjoint()
        observed.append(stack.effective_adjoint())
        stack.begin_adjoint()
        observed.append(stack.effective_adjoint())
        stack.end_adjoint()
        observed.append(stack.effective_adjoint())
        stack.end_adjoint()
        observed.append(stack.effective_adjoint())
        assert observed == [False, True, False, True, False]
        assert stack.adjoint_depth == 0
        assert stack.is_balanced()

    def test_end_after_balanced_pair_fails(self):
        stack = RegionStack()
        stack.begin_adjoint()
        stack.end_adjoint()
        with pytest.raises(ProtocolViolation):
            stack.end_adjoint()


# =============================================================================
# CONTROL REGIONS
# =============================================================================

class TestControlRegions:
    """Control frames are LIFO and must be popped with their exact size."""

    def test_frame_handle_size(self, qubits):
        frame = RegionStack().begin_control(qubits[:3])
        assert frame.size == 3

    def test_duplicate_qudits_collapsed(self, qubits):
        frame = RegionStack().begin_control([qubits[0], qubits[0], qubits[1]])
        assert frame.qudits == (qubits[0], qubits[1])

    def test_effective_controls_outermost_first(self, qubits):
        stack = RegionStack()
        stack.begin_control([qubits[2]])
        stack.begin_control([qubits[0], qubits[1]])
        assert stack.effective_controls() == (qubits[2], qubits[0], qubits[1])

    def test_pop_restores_previous_set(self, qubits):
        stack = RegionStack()
        stack.begin_control([qubits[0]])
        before = stack.effective_controls()
        stack.begin_control([qubits[1], qubits[2]])
        stack.end_control(2)
        assert stack.effective_controls() == before
        stack.end_control(1)
        assert stack.effective_controls() == ()
        assert stack.is_balanced()

    def test_pop_size_mismatch(self, qubits):
        stack = RegionStack()
        stack.begin_control(qubits[:2])
        with pytest.raises(ProtocolViolation, match="holds 2"):
            stack.end_control(1)
        assert stack.num_frames == 1

    def test_pop_empty_stack(self):
        with pytest.raises(ProtocolViolation):
            RegionStack().end_control(1)

    def test_pop_more_than_innermost(self, qubits):
        stack = RegionStack()
        stack.begin_control([qubits[0]])
        stack.begin_control([qubits[1]])
        with pytest.raises(ProtocolViolation):
            stack.end_control(2)

    def test_adjoint_and_control_independent(self, qubits):
        stack = RegionStack()
        stack.begin_adjoint()
        stack.begin_control([qubits[0]])
        stack.end_adjoint()
        assert stack.effective_controls() == (qubits[0],)
        assert not stack.effective_adjoint()
        assert not stack.is_balanced()
        stack.end_control(1)
        assert stack.is_balanced()


# =============================================================================
# MANAGER REGION API
# =============================================================================

class TestManagerRegions:
    """Region calls on the manager; teardown with open regions fails."""

    def test_ctrl_region_requires_live_qudits(self, tracer):
        with pytest.raises(ProtocolViolation):
            tracer.start_ctrl_region([QuditInfo(2, 9)])

    def test_close_with_open_adjoint_region(self, tracer):
        tracer.start_adjoint_region()
        with pytest.raises(ProtocolViolation, match="open regions"):
            tracer.close()

    def test_close_with_open_control_region(self, tracer):
        q = tracer.allocate_qudit()
        tracer.start_ctrl_region([q])
        with pytest.raises(ProtocolViolation):
            tracer.close()

    def test_region_events_not_forwarded(self, tracer):
        q = tracer.allocate_qudit()
        tracer.clear_trace()
        tracer.start_adjoint_region()
        tracer.start_ctrl_region([q])
        tracer.end_ctrl_region(1)
        tracer.end_adjoint_region()
        assert tracer.trace == []

    def test_return_of_region_control_refused(self, tracer):
        a, b = tracer.allocate_qudit(), tracer.allocate_qudit()
        tracer.start_ctrl_region([a])
        with pytest.raises(ProtocolViolation, match="open control region"):
            tracer.return_qudit(a)
        assert a.id in tracer.live_qudits()

        # A recycled id must never pick up a stale frame
        tracer.end_ctrl_region(1)
        tracer.return_qudit(a)
        c = tracer.allocate_qudit()
        assert c.id == a.id
        tracer.apply("x", targets=[b])
        assert tracer.instructions[-1].controls == ()
