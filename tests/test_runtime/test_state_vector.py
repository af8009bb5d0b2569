"""
Test Suite: State-Vector Reference Backend
==========================================

End-to-end checks that resolved instructions have the intended effect:
entanglement, region-controlled and adjoint gates, noise, reset, spin-operator
expectations, state initialization, gate batching and capacity limits.
"""

import numpy as np
import pytest

from qpu_runtime import (
    ExecutionContext,
    NoiseModel,
    ProtocolViolation,
    ResourceExhaustion,
    RuntimeConfig,
    SimulationPrecision,
    SimulationState,
    StateVectorManager,
    amplitude_damping_channel,
    bit_flip_channel,
    spin_x,
    spin_z,
)
from qpu_runtime.backends import controlled_matrix


SHIFT3 = np.roll(np.eye(3), 1, axis=0)  # |k> -> |k+1 mod 3>


def bell_pair(em):
    q0, q1 = em.allocate_qudit(), em.allocate_qudit()
    em.apply("h", targets=[q0])
    em.apply("x", controls=[q0], targets=[q1])
    return q0, q1


# =============================================================================
# GATES AND CONTROLS
# =============================================================================

class TestGates:
    """Unitary evolution through the dispatcher."""

    def test_bell_state_amplitudes(self, simulator):
        bell_pair(simulator)
        state = simulator.get_state()
        expected = np.array([1, 0, 0, 1]) / np.sqrt(2)
        assert np.allclose(state.amplitudes, expected)
        assert state.dims == (2, 2)

    def test_bell_measurements_correlated(self, simulator):
        for _ in range(20):
            q0, q1 = bell_pair(simulator)
            assert simulator.measure(q0) == simulator.measure(q1)
            simulator.return_qudit(q1)
            simulator.return_qudit(q0)
        assert not simulator.memory_leaked()

    def test_control_region_acts_as_cnot(self, simulator):
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        simulator.apply("x", targets=[q0])
        simulator.start_ctrl_region([q0])
        simulator.apply("x", targets=[q1])
        simulator.end_ctrl_region(1)
        assert simulator.measure(q1) == 1

    def test_control_off_leaves_target(self, simulator):
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        simulator.start_ctrl_region([q0])
        simulator.apply("x", targets=[q1])
        simulator.end_ctrl_region(1)
        assert simulator.measure(q1) == 0

    def test_toffoli_from_region_and_explicit(self, simulator):
        a, b, c = (simulator.allocate_qudit() for _ in range(3))
        simulator.apply("x", targets=[a])
        simulator.apply("x", targets=[b])
        simulator.start_ctrl_region([a])
        simulator.apply("x", controls=[b], targets=[c])
        simulator.end_ctrl_region(1)
        assert simulator.probabilities(c)[1] == pytest.approx(1.0)

    def test_adjoint_region_undoes_gate(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("h", targets=[q])
        simulator.apply("t", targets=[q])
        simulator.start_adjoint_region()
        simulator.apply("t", targets=[q])
        simulator.end_adjoint_region()
        simulator.apply("h", targets=[q])
        assert simulator.probabilities(q)[0] == pytest.approx(1.0)

    def test_double_adjoint_region_is_plain(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("h", targets=[q])
        simulator.start_adjoint_region()
        simulator.start_adjoint_region()
        simulator.apply("s", targets=[q])
        simulator.end_adjoint_region()
        simulator.end_adjoint_region()
        simulator.apply("s", targets=[q])
        simulator.apply("h", targets=[q])
        # S·S = Z, and H Z H = X
        assert simulator.probabilities(q)[1] == pytest.approx(1.0)

    def test_exp_pauli_flips(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("exp_pauli", params=[np.pi / 2], targets=[q], op=spin_x(0))
        assert simulator.measure(q) == 1

    def test_swap(self, simulator):
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        simulator.apply("x", targets=[q0])
        simulator.apply("swap", targets=[q0, q1])
        assert (simulator.measure(q0), simulator.measure(q1)) == (0, 1)

    def test_controlled_matrix_layout(self):
        cx = controlled_matrix(np.array([[0, 1], [1, 0]]), [2])
        expected = np.array([[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 0, 1], [0, 0, 1, 0]])
        assert np.allclose(cx, expected)


# =============================================================================
# QUDITS
# =============================================================================

class TestQudits:
    """Mixed-dimension registers."""

    def test_custom_qutrit_shift(self, simulator):
        simulator.register_operation("shift3", SHIFT3)
        q = simulator.allocate_qudit(levels=3)
        simulator.apply("shift3", targets=[q])
        simulator.apply("shift3", targets=[q])
        assert simulator.measure(q) == 2

    def test_qutrit_control_needs_top_level(self, simulator):
        simulator.register_operation("shift3", SHIFT3)
        c = simulator.allocate_qudit(levels=3)
        t = simulator.allocate_qudit()
        simulator.apply("shift3", targets=[c])
        simulator.apply("x", controls=[c], targets=[t])
        assert simulator.measure(t) == 0
        simulator.apply("shift3", targets=[c])
        simulator.apply("x", controls=[c], targets=[t])
        assert simulator.measure(t) == 1

    def test_builtin_on_qutrit_rejected(self, simulator):
        q = simulator.allocate_qudit(levels=3)
        with pytest.raises(ValueError, match="3-dimensional"):
            simulator.apply("x", targets=[q])


# =============================================================================
# NOISE
# =============================================================================

class TestNoise:
    """Kraus channels applied as trajectories."""

    def test_certain_bit_flip(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply_noise(bit_flip_channel(1.0), [q])
        assert simulator.measure(q) == 1
        assert simulator.noise_events == 1

    def test_full_amplitude_damping(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        simulator.apply_noise(amplitude_damping_channel(1.0), [q])
        assert simulator.measure(q) == 0

    def test_noise_model_from_context(self, simulator):
        noise = NoiseModel()
        noise.add_channel("x", bit_flip_channel(1.0))
        simulator.set_execution_context(ExecutionContext(noise_model=noise))
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        assert simulator.measure(q) == 0
        simulator.reset_execution_context()

    def test_noise_model_restricted_to_qudit(self, simulator):
        noise = NoiseModel()
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        noise.add_channel("x", bit_flip_channel(1.0), [q1.id])
        simulator.set_execution_context(ExecutionContext(noise_model=noise))
        simulator.apply("x", targets=[q0])
        simulator.apply("x", targets=[q1])
        assert (simulator.measure(q0), simulator.measure(q1)) == (1, 0)
        simulator.reset_execution_context()


# =============================================================================
# MEASUREMENT AND RESET
# =============================================================================

class TestMeasurement:
    """Collapse, reset and reproducibility."""

    def test_reset_to_ground(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        simulator.reset(q)
        assert simulator.probabilities(q)[0] == pytest.approx(1.0)

    def test_reset_qutrit(self, simulator):
        simulator.register_operation("shift3", SHIFT3)
        q = simulator.allocate_qudit(levels=3)
        simulator.apply("shift3", targets=[q])
        simulator.reset(q)
        assert simulator.measure(q) == 0

    def test_superposition_statistics(self, simulator):
        outcomes = []
        for _ in range(400):
            q = simulator.allocate_qudit()
            simulator.apply("h", targets=[q])
            outcomes.append(simulator.measure(q))
            simulator.return_qudit(q)
        assert 0.4 < np.mean(outcomes) < 0.6

    def test_seed_reproducible(self):
        def run():
            em = StateVectorManager(config=RuntimeConfig(seed=99))
            bits = []
            for _ in range(16):
                q = em.allocate_qudit()
                em.apply("h", targets=[q])
                bits.append(em.measure(q))
                em.return_qudit(q)
            return bits

        assert run() == run()

    def test_context_seed_reseeds(self, simulator):
        def run():
            simulator.set_execution_context(ExecutionContext(seed=5))
            q = simulator.allocate_qudit()
            bits = []
            for _ in range(16):
                simulator.apply("h", targets=[q])
                bits.append(simulator.measure(q))
            simulator.return_qudit(q)
            simulator.reset_execution_context()
            return bits

        assert run() == run()

    def test_return_entangled_qudit(self, simulator):
        q0, q1 = bell_pair(simulator)
        simulator.return_qudit(q0)
        p = simulator.probabilities(q1)
        assert np.isclose(p[0], 1.0) or np.isclose(p[1], 1.0)
        assert simulator.get_state().dims == (2,)


# =============================================================================
# SPIN-OPERATOR EXPECTATIONS
# =============================================================================

class TestSpinExpectation:
    """measure_spin_op returns Σ c·<P> and a per-term record."""

    def test_z_after_x(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        result = simulator.measure_spin_op(spin_z(q.id))
        assert result.expectation_value == pytest.approx(-1.0)
        assert result.term_results == {f"Z{q.id}": pytest.approx(-1.0)}

    def test_weighted_sum_on_bell_pair(self, simulator):
        q0, q1 = bell_pair(simulator)
        op = 0.5 * spin_z(q0.id) * spin_z(q1.id) + 0.25 * spin_x(q0.id) * spin_x(q1.id) + 2.0
        result = simulator.measure_spin_op(op)
        assert result.expectation_value == pytest.approx(0.5 + 0.25 + 2.0)
        assert result.term_results["I"] == 1.0

    def test_no_samples_without_context(self, simulator):
        q = simulator.allocate_qudit()
        assert simulator.measure_spin_op(spin_z(q.id)).term_samples is None

    def test_shots_sampled_per_term(self, simulator):
        q0, q1 = bell_pair(simulator)
        simulator.set_execution_context(ExecutionContext(name="observe", shots=200))
        op = spin_z(q0.id) * spin_z(q1.id) + spin_x(q0.id) + 1.5
        result = simulator.measure_spin_op(op)
        simulator.reset_execution_context()

        zz = f"Z{q0.id} Z{q1.id}"
        assert set(result.term_samples) == {zz, f"X{q0.id}"}, "identity term is not sampled"
        assert set(result.term_samples[zz]) <= {"00", "11"}, "Bell pair outcomes are correlated"
        assert sum(result.term_samples[zz].values()) == 200
        assert sum(result.term_samples[f"X{q0.id}"].values()) == 200

    def test_samples_follow_measurement_basis(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        ctx = ExecutionContext(shots=50)
        simulator.set_execution_context(ctx)
        z_result = simulator.measure_spin_op(spin_z(q.id))
        simulator.apply("h", targets=[q])  # |->
        x_result = simulator.measure_spin_op(spin_x(q.id))
        simulator.reset_execution_context()
        assert z_result.term_samples == {f"Z{q.id}": {"1": 50}}
        assert x_result.term_samples == {f"X{q.id}": {"1": 50}}
        assert ctx.expectation_value == pytest.approx(-1.0)

    def test_does_not_collapse(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("h", targets=[q])
        simulator.measure_spin_op(spin_z(q.id))
        assert np.allclose(simulator.probabilities(q), [0.5, 0.5])

    def test_dead_qubit_rejected(self, simulator):
        with pytest.raises(ProtocolViolation):
            simulator.measure_spin_op(spin_z(7))

    def test_qutrit_rejected(self, simulator):
        q = simulator.allocate_qudit(levels=3)
        with pytest.raises(ValueError, match="qubits"):
            simulator.measure_spin_op(spin_z(q.id))


# =============================================================================
# STATE INITIALIZATION
# =============================================================================

class TestInitializeState:
    """Raw buffers and SimulationState handles."""

    def test_raw_buffer(self, simulator):
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        simulator.initialize_state([q0, q1], [0, 0, 0, 1])
        assert (simulator.measure(q0), simulator.measure(q1)) == (1, 1)

    def test_target_order_respected(self, simulator):
        q0, q1 = simulator.allocate_qudit(), simulator.allocate_qudit()
        simulator.initialize_state([q1, q0], [0, 1, 0, 0])  # q1=0, q0=1
        assert (simulator.measure(q0), simulator.measure(q1)) == (1, 0)

    def test_fp32_buffer(self, simulator):
        q = simulator.allocate_qudit()
        amp = np.array([1, 1], dtype=np.complex64) / np.sqrt(2)
        simulator.initialize_state([q], amp, SimulationPrecision.FP32)
        assert np.allclose(simulator.probabilities(q), [0.5, 0.5], atol=1e-6)

    def test_state_handle_round_trip(self, simulator):
        bell_pair(simulator)
        snapshot = simulator.get_state()
        other = StateVectorManager()
        targets = [other.allocate_qudit(), other.allocate_qudit()]
        other.initialize_state(targets, snapshot)
        assert np.allclose(other.get_state().amplitudes, snapshot.amplitudes)

    def test_wrong_size(self, simulator):
        q = simulator.allocate_qudit()
        with pytest.raises(ValueError, match="amplitudes"):
            simulator.initialize_state([q], [1, 0, 0])

    def test_unnormalized(self, simulator):
        q = simulator.allocate_qudit()
        with pytest.raises(ValueError, match="normalized"):
            simulator.initialize_state([q], [1, 1])

    def test_excited_target_rejected(self, simulator):
        q = simulator.allocate_qudit()
        simulator.apply("x", targets=[q])
        with pytest.raises(ProtocolViolation):
            simulator.initialize_state([q], [0, 1])

    def test_dims_mismatch(self, simulator):
        q = simulator.allocate_qudit()
        with pytest.raises(ValueError, match="dimensions"):
            simulator.initialize_state([q], SimulationState(np.array([1, 0, 0]), (3,)))


# =============================================================================
# BATCHING AND CAPACITY
# =============================================================================

class TestBatchingAndCapacity:
    """Queued gates drain on synchronize; oversized states are refused."""

    def test_gates_queued_until_synchronize(self):
        em = StateVectorManager(batch_gates=True)
        q = em.allocate_qudit()
        em.apply("x", targets=[q])
        em.apply("h", targets=[q])
        assert em.queued_instructions == 2
        assert em.gate_count == 0
        em.synchronize()
        assert em.queued_instructions == 0
        assert em.gate_count == 2

    def test_measure_drains_queue(self):
        em = StateVectorManager(batch_gates=True)
        q = em.allocate_qudit()
        em.apply("x", targets=[q])
        assert em.measure(q) == 1

    def test_binding_context_drains_earlier_gates(self):
        """Gates queued before a context is bound do not see its noise model."""
        em = StateVectorManager(batch_gates=True)
        q = em.allocate_qudit()
        em.apply("x", targets=[q])
        noise = NoiseModel()
        noise.add_channel("x", bit_flip_channel(1.0))
        ctx = ExecutionContext(noise_model=noise, seed=7)
        em.set_execution_context(ctx)
        assert em.queued_instructions == 0
        em.synchronize()
        assert em.probabilities(q)[1] == pytest.approx(1.0)
        assert em.noise_events == 0, "later context's noise fired on an earlier gate"
        em.reset_execution_context()

    def test_failed_drain_keeps_remaining_gates(self):
        noise = NoiseModel()
        noise.add_channel("swap", bit_flip_channel(0.5))  # 2x2 channel on a 4-dim gate
        em = StateVectorManager(batch_gates=True)
        q0, q1, q2 = em.allocate_qudit(), em.allocate_qudit(), em.allocate_qudit()
        em.set_execution_context(ExecutionContext(noise_model=noise))
        em.apply("swap", targets=[q0, q1])
        em.apply("x", targets=[q2])
        with pytest.raises(ValueError, match="dimension"):
            em.synchronize()
        assert em.queued_instructions == 1
        em.synchronize()
        assert em.queued_instructions == 0
        assert em.probabilities(q2)[1] == pytest.approx(1.0)
        em.reset_execution_context()

    def test_flush_gate_queue(self):
        em = StateVectorManager(batch_gates=True)
        q = em.allocate_qudit()
        em.apply("x", targets=[q])
        em.flush_gate_queue()
        assert em.queued_instructions == 0

    def test_capacity_exceeded(self):
        em = StateVectorManager(config=RuntimeConfig(max_qudits=3, seed=0))
        qubits = [em.allocate_qudit() for _ in range(3)]
        with pytest.raises(ResourceExhaustion):
            em.allocate_qudit()
        assert em.live_qudits() == [q.id for q in qubits]
        assert isinstance(ResourceExhaustion("x"), MemoryError)

    def test_verbose_summary(self, capsys):
        em = StateVectorManager(verbose=True)
        q = em.allocate_qudit()
        em.apply("x", targets=[q])
        em.return_qudit(q)
        em.close()
        out = capsys.readouterr().out
        assert "STATE-VECTOR BACKEND SUMMARY" in out
        assert "Gates applied:      1" in out

    def test_context_manager_closes(self):
        with pytest.warns(ResourceWarning):
            with StateVectorManager() as em:
                em.allocate_qudit()
