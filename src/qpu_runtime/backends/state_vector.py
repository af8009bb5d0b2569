"""
State-Vector Reference Backend
==============================

A dense state-vector simulator implementing the execution-manager backend
hooks with numpy. It exists so the contract can be exercised end to end; it
makes no attempt to be fast.

STATE LAYOUT
------------
The state is stored as a tensor with one axis per live qudit::

    ψ[i₀, i₁, ..., iₙ₋₁]     axis k ↔ qudit id self._axes[k]

Allocating a qudit appends an axis in |0⟩. Returning a qudit measures it
(so it is disentangled) and drops its axis.

APPLYING AN OPERATION
---------------------
A k-qudit matrix U is reshaped to (d₁..dₖ, d₁..dₖ) and contracted with the
state over the target axes (``np.tensordot``); the new axes are then moved
back into place. A controlled operation acts as U when every control is in
its highest level (|1⟩ for qubits) and as the identity otherwise.

NOISE
-----
Kraus channels are applied as quantum trajectories: operator Kₖ is chosen
with probability ‖Kₖψ‖² and the state becomes Kₖψ/‖Kₖψ‖. The channels of
the bound context's ``NoiseModel`` fire after each matching instruction.

SPIN-OPERATOR MEASUREMENT
-------------------------
Expectation values are exact. While a context is bound, each non-identity
term is also sampled ``ctx.shots`` times in its own basis and the bitstring
counts are returned as ``SpinMeasureResult.term_samples``.

BATCHING
--------
With ``batch_gates=True`` instructions are queued and only applied by
``synchronize()`` / ``flush_gate_queue()`` or by an operation that needs
the state (measurement, reset, noise, allocation, ...).
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import RuntimeConfig
from ..errors import ProtocolViolation, ResourceExhaustion
from ..execution_context import ExecutionContext
from ..manager import ExecutionManager, Instruction
from ..operators import KrausChannel, SpinOperator, SpinOperatorTerm
from ..qudits import QuditInfo
from ..registry import register_execution_manager
from ..results import SpinMeasureResult
from ..state import SimulationState


logger = logging.getLogger(__name__)

# Rotations taking each Pauli eigenbasis to the computational basis
_BASIS_CHANGE = {
    "X": np.array([[1, 1], [1, -1]], dtype=complex) / np.sqrt(2),
    "Y": np.array([[1, -1j], [1, 1j]], dtype=complex) / np.sqrt(2),
    "Z": np.eye(2, dtype=complex),
}


def controlled_matrix(u: np.ndarray, control_levels: Sequence[int]) -> np.ndarray:
    """
    Embed ``u`` in the space of controls ⊗ targets.

    The block acting on the targets is ``u`` only when every control sits in
    its highest level; every other block is the identity.
    """
    dim_c = int(np.prod(control_levels)) if control_levels else 1
    dim_t = u.shape[0]
    full = np.eye(dim_c * dim_t, dtype=complex)
    start = (dim_c - 1) * dim_t
    full[start:start + dim_t, start:start + dim_t] = u
    return full


class StateVectorManager(ExecutionManager):
    """
    Dense numpy simulator.

    Parameters
    ----------
    config : RuntimeConfig, optional
        Runtime settings; ``seed`` and ``max_qudits`` are used here.
    batch_gates : bool
        Queue instructions until the state is needed.
    verbose : bool
        Print a summary on ``close()``.
    """

    def __init__(self, config: Optional[RuntimeConfig] = None,
                 batch_gates: bool = False, verbose: bool = False):
        super().__init__(config)
        self.batch_gates = batch_gates
        self.verbose = verbose
        self._state = np.ones((), dtype=complex)
        self._axes: List[int] = []
        self._queue: List[Instruction] = []
        self._rng = np.random.default_rng(self.config.seed)
        self.gate_count = 0
        self.noise_events = 0

    # -------------------------------------------------------------------------
    # Tensor helpers
    # -------------------------------------------------------------------------

    def _axis(self, qudit: QuditInfo) -> int:
        return self._axes.index(qudit.id)

    def _apply_matrix(self, matrix: np.ndarray, qudits: Sequence[QuditInfo],
                      state: Optional[np.ndarray] = None) -> np.ndarray:
        """Return ``matrix`` applied to ``qudits`` of ``state`` (default: current)."""
        psi = self._state if state is None else state
        axes = [self._axis(q) for q in qudits]
        dims = [q.levels for q in qudits]
        k = len(qudits)
        u = matrix.reshape(dims + dims)
        out = np.tensordot(u, psi, axes=(list(range(k, 2 * k)), axes))
        return np.moveaxis(out, list(range(k)), axes)

    def _probabilities(self, qudit: QuditInfo) -> np.ndarray:
        axis = self._axis(qudit)
        others = tuple(i for i in range(self._state.ndim) if i != axis)
        probs = np.sum(np.abs(self._state) ** 2, axis=others)
        return probs / probs.sum()

    def _collapse(self, qudit: QuditInfo) -> int:
        """Sample a measurement outcome and project the state onto it."""
        probs = self._probabilities(qudit)
        outcome = int(self._rng.choice(qudit.levels, p=probs))
        index = [slice(None)] * self._state.ndim
        index[self._axis(qudit)] = outcome
        collapsed = np.zeros_like(self._state)
        collapsed[tuple(index)] = self._state[tuple(index)] / np.sqrt(probs[outcome])
        self._state = collapsed
        return outcome

    def _apply_kraus(self, channel: KrausChannel, targets: Sequence[QuditInfo]) -> None:
        candidates = [self._apply_matrix(k, targets) for k in channel.operators]
        weights = np.array([np.vdot(c, c).real for c in candidates])
        weights = weights / weights.sum()
        choice = int(self._rng.choice(len(candidates), p=weights))
        logger.debug("Channel %s picked Kraus operator %d (p=%.4g)", channel.name, choice, weights[choice])
        self._state = candidates[choice] / np.sqrt(weights[choice])
        self.noise_events += 1

    def _check_capacity(self, dimension: int) -> None:
        limit = self.config.max_state_dimension
        if dimension > limit:
            raise ResourceExhaustion(
                f"State of dimension {dimension} exceeds the state-vector capacity "
                f"of {limit} amplitudes (max_qudits={self.config.max_qudits})"
            )

    # -------------------------------------------------------------------------
    # Gate queue
    # -------------------------------------------------------------------------

    def _drain_queue(self) -> None:
        # Instructions after a failing one stay queued
        while self._queue:
            self._run(self._queue.pop(0))

    def _run(self, instruction: Instruction) -> None:
        u = instruction.target_matrix()
        if instruction.controls:
            u = controlled_matrix(u, [q.levels for q in instruction.controls])
        self._state = self._apply_matrix(u, instruction.controls + instruction.targets)
        self.gate_count += 1

        ctx = self.execution_context
        if ctx is not None and ctx.noise_model is not None:
            target_ids = [q.id for q in instruction.targets]
            for channel in ctx.noise_model.get_channels(instruction.name, target_ids):
                dim = int(np.prod([q.levels for q in instruction.targets]))
                if channel.dimension != dim:
                    raise ValueError(
                        f"Noise channel '{channel.name}' for '{instruction.name}' has "
                        f"dimension {channel.dimension}, targets span {dim}"
                    )
                self._apply_kraus(channel, instruction.targets)

    @property
    def queued_instructions(self) -> int:
        return len(self._queue)

    def synchronize(self) -> None:
        self._drain_queue()

    def flush_gate_queue(self) -> None:
        self._drain_queue()

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    def _on_qudit_allocated(self, qudit: QuditInfo) -> None:
        self._drain_queue()
        self._check_capacity(self._state.size * qudit.levels)
        ground = np.zeros(qudit.levels, dtype=complex)
        ground[0] = 1.0
        self._state = np.tensordot(self._state, ground, axes=0)
        self._axes.append(qudit.id)

    def _on_qudit_returned(self, qudit: QuditInfo) -> None:
        self._drain_queue()
        outcome = self._collapse(qudit)
        self._state = np.take(self._state, outcome, axis=self._axis(qudit))
        self._axes.remove(qudit.id)

    def _on_context_set(self, ctx: ExecutionContext) -> None:
        # Queued work belongs to the previous context
        self._drain_queue()
        if ctx.seed is not None:
            self._rng = np.random.default_rng(ctx.seed)

    def _on_context_reset(self, ctx: ExecutionContext) -> None:
        self._drain_queue()

    def _initialize_state(self, targets: Tuple[QuditInfo, ...], state: SimulationState) -> None:
        self._drain_queue()
        psi = self._state
        for q in targets:
            p0 = self._probabilities(q)[0]
            if not np.isclose(p0, 1.0, atol=1e-10):
                raise ProtocolViolation(
                    f"initialize_state() needs qudits in their ground state; qudit "
                    f"{q.id} has P(0) = {p0:.6g}"
                )
        # Drop target axes (highest index first so earlier indices stay valid)
        for axis in sorted((self._axis(q) for q in targets), reverse=True):
            psi = np.take(psi, 0, axis=axis)
        remaining = [idx for idx in self._axes if idx not in {q.id for q in targets}]
        self._state = np.tensordot(psi, state.as_tensor(), axes=0)
        self._axes = remaining + [q.id for q in targets]

    def _execute_instruction(self, instruction: Instruction) -> None:
        if self.batch_gates:
            self._queue.append(instruction)
        else:
            self._run(instruction)

    def _apply_noise(self, channel: KrausChannel, targets: Tuple[QuditInfo, ...]) -> None:
        self._drain_queue()
        self._apply_kraus(channel, targets)

    def _reset_qudit(self, target: QuditInfo) -> None:
        self._drain_queue()
        outcome = self._collapse(target)
        if outcome == 0:
            return
        axis = self._axis(target)
        src = [slice(None)] * self._state.ndim
        dst = list(src)
        src[axis], dst[axis] = outcome, 0
        moved = np.zeros_like(self._state)
        moved[tuple(dst)] = self._state[tuple(src)]
        self._state = moved

    def _measure_qudit(self, target: QuditInfo, register_name: str) -> int:
        self._drain_queue()
        return self._collapse(target)

    def _sample_term(self, term: SpinOperatorTerm, qubits: Sequence[QuditInfo],
                     shots: int) -> Dict[str, int]:
        """Bitstring counts from measuring ``qubits`` in the basis of ``term``."""
        rotation = np.ones((1, 1), dtype=complex)
        for _, letter in term.paulis:
            rotation = np.kron(rotation, _BASIS_CHANGE[letter])
        rotated = self._apply_matrix(rotation, qubits)
        k = len(qubits)
        rotated = np.moveaxis(rotated, [self._axis(q) for q in qubits], list(range(k)))
        joint = np.sum(np.abs(rotated) ** 2, axis=tuple(range(k, rotated.ndim))).reshape(-1)
        counts = self._rng.multinomial(shots, joint / joint.sum())
        return {format(i, f"0{k}b"): int(n) for i, n in enumerate(counts) if n}

    def _measure_spin_op(self, op: SpinOperator) -> SpinMeasureResult:
        self._drain_queue()
        ctx = self.execution_context
        by_id = {idx: QuditInfo(2, idx) for idx in op.qubits()}
        total = 0.0
        term_results: Dict[str, float] = {}
        term_samples: Optional[Dict[str, Dict[str, int]]] = {} if ctx is not None else None
        for term in op:
            if term.is_identity():
                value = 1.0
            else:
                qubits = [by_id[idx] for idx in term.qubits()]
                pauli = SpinOperatorTerm(term.paulis).to_matrix(term.qubits())
                value = float(np.vdot(self._state, self._apply_matrix(pauli, qubits)).real)
                if term_samples is not None:
                    term_samples[term.to_string()] = self._sample_term(term, qubits, ctx.shots)
            term_results[term.to_string()] = value
            total += (term.coefficient * value).real
        return SpinMeasureResult(float(total), term_results, term_samples)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def get_state(self, qudits: Optional[Sequence[QuditInfo]] = None) -> SimulationState:
        """
        Copy of the full state with axes ordered as ``qudits``
        (default: ascending id). Every live qudit must be listed.
        """
        self.synchronize()
        if qudits is None:
            qudits = [QuditInfo(self._pool.levels_of(idx), idx) for idx in sorted(self._axes)]
        ids = [q.id for q in qudits]
        if sorted(ids) != sorted(self._axes):
            raise ValueError(f"get_state() must list every live qudit {sorted(self._axes)}, got {ids}")
        tensor = np.transpose(self._state, [self._axes.index(idx) for idx in ids])
        return SimulationState(tensor.reshape(-1).copy(), tuple(q.levels for q in qudits))

    def probabilities(self, qudit: QuditInfo) -> np.ndarray:
        """Marginal outcome distribution of ``qudit`` (no collapse)."""
        self.synchronize()
        self._require_live(qudit)
        return self._probabilities(qudit)

    def close(self) -> None:
        self.synchronize()
        super().close()
        if self.verbose:
            print(f"\n{'='*60}")
            print("STATE-VECTOR BACKEND SUMMARY")
            print(f"{'='*60}")
            print(f"Gates applied:      {self.gate_count}")
            print(f"Noise events:       {self.noise_events}")
            print(f"Live qudits:        {self._pool.num_live}")
            print(f"State dimension:    {self._state.size}")
            print(f"{'='*60}")


register_execution_manager("state_vector", StateVectorManager)
