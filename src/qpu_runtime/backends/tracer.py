"""
Tracing Backend
===============

Records every event that reaches the backend, in order, without simulating
anything. Useful to inspect what the dispatcher actually forwards (final
adjoint flags, composed controls, resolved custom operations) and to count
resources.

Each event is a ``TraceEvent``. Events go to ``TracerManager.trace`` and,
while a context is bound, to ``ExecutionContext.trace`` as well.

Measurements return ``default_outcome`` (0 unless configured); spin-operator
measurements return an expectation value of 0 with no term record.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..config import RuntimeConfig
from ..manager import ExecutionManager, Instruction
from ..operators import KrausChannel, SpinOperator
from ..qudits import QuditInfo
from ..registry import register_execution_manager
from ..results import SpinMeasureResult
from ..state import SimulationState


@dataclass(frozen=True)
class TraceEvent:
    """
    One backend event.

    Attributes
    ----------
    kind : str
        "allocate", "return", "init_state", "apply", "noise", "reset",
        "measure", "measure_spin_op" or "synchronize".
    qudits : tuple of QuditInfo
        Qudits the event touches (controls first for "apply").
    payload : Any
        The ``Instruction`` for "apply", the channel for "noise", the
        register name for "measure", the operator for "measure_spin_op".
    """
    kind: str
    qudits: Tuple[QuditInfo, ...] = ()
    payload: Any = None


class TracerManager(ExecutionManager):
    """Backend that records events instead of executing them."""

    def __init__(self, config: Optional[RuntimeConfig] = None, default_outcome: int = 0):
        super().__init__(config)
        self.default_outcome = default_outcome
        self.trace: List[TraceEvent] = []

    def _record(self, event: TraceEvent) -> None:
        self.trace.append(event)
        ctx = self.execution_context
        if ctx is not None:
            ctx.trace.append(event)

    @property
    def instructions(self) -> List[Instruction]:
        """Forwarded instructions, in dispatch order."""
        return [e.payload for e in self.trace if e.kind == "apply"]

    def gate_counts(self) -> Counter:
        """Number of forwarded instructions per operation name."""
        return Counter(instr.name for instr in self.instructions)

    def clear_trace(self) -> None:
        self.trace.clear()

    def _on_qudit_allocated(self, qudit: QuditInfo) -> None:
        self._record(TraceEvent("allocate", (qudit,)))

    def _on_qudit_returned(self, qudit: QuditInfo) -> None:
        self._record(TraceEvent("return", (qudit,)))

    def _initialize_state(self, targets: Tuple[QuditInfo, ...], state: SimulationState) -> None:
        self._record(TraceEvent("init_state", targets, state))

    def _execute_instruction(self, instruction: Instruction) -> None:
        self._record(TraceEvent("apply", instruction.controls + instruction.targets, instruction))

    def _apply_noise(self, channel: KrausChannel, targets: Tuple[QuditInfo, ...]) -> None:
        self._record(TraceEvent("noise", targets, channel))

    def _reset_qudit(self, target: QuditInfo) -> None:
        self._record(TraceEvent("reset", (target,)))

    def _measure_qudit(self, target: QuditInfo, register_name: str) -> int:
        self._record(TraceEvent("measure", (target,), register_name))
        return self.default_outcome

    def _measure_spin_op(self, op: SpinOperator) -> SpinMeasureResult:
        self._record(TraceEvent("measure_spin_op", (), op))
        return SpinMeasureResult(0.0, {})

    def synchronize(self) -> None:
        self._record(TraceEvent("synchronize"))


register_execution_manager("tracer", TracerManager)
