"""
Execution Manager
=================

The ``ExecutionManager`` is the object generated kernel code talks to. It
owns three pieces of bookkeeping and one dispatch discipline:

1. **Qudit identities** (``QuditIdPool``): allocation, return, leak checks.
2. **Regions** (``RegionStack``): nested adjoint and control scopes.
3. **Context binding**: at most one externally owned ``ExecutionContext``.
4. **Dispatch**: every instruction is resolved *before* a backend sees it.

HOW AN INSTRUCTION IS RESOLVED
------------------------------
For ``apply(name, params, controls, targets, is_adjoint, op)``::

    final_adjoint  = is_adjoint XOR (adjoint depth is odd)
    final_controls = explicit controls, then region controls (outermost first)
    operation      = built-in gate table → custom operation registry
                     → UnknownOperation

The backend receives a single ``Instruction`` carrying the resolved values.
Region start/end events are never forwarded.

Noise, reset and measurement bypass the region stack: they are executed
verbatim whatever scopes are open.

WRITING A BACKEND
-----------------
Subclass ``ExecutionManager`` and implement the protected hooks:

==========================  ================================================
Hook                        Called by
==========================  ================================================
``_on_qudit_allocated``     ``allocate_qudit`` (after the id is assigned)
``_on_qudit_returned``      ``return_qudit`` (before the id is recycled)
``_on_context_set``         ``set_execution_context`` (optional)
``_on_context_reset``       ``reset_execution_context`` (optional)
``_initialize_state``       ``initialize_state``
``_execute_instruction``    ``apply``
``_apply_noise``            ``apply_noise``
``_reset_qudit``            ``reset``
``_measure_qudit``          ``measure``
``_measure_spin_op``        ``measure_spin_op``
``synchronize``             callers, before reading accumulated state
``flush_gate_queue``        callers, optional timing hint (default no-op)
==========================  ================================================

Then register the class by name (see ``registry.register_execution_manager``).
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import RuntimeConfig, get_runtime_config
from .custom_ops import CustomOperation, CustomOpRegistry, OperationDefinition
from .errors import ProtocolViolation, UnknownOperation
from .execution_context import GLOBAL_REGISTER, ExecutionContext
from .gates import get_gate_definition, is_builtin_gate
from .operators import IDENTITY_TERM, KrausChannel, SpinOperator, SpinOperatorTerm
from .qudits import QuditIdPool, QuditInfo
from .regions import ControlFrame, RegionStack, unique_in_order
from .results import SpinMeasureResult
from .state import SimulationPrecision, SimulationState


logger = logging.getLogger(__name__)


# =============================================================================
# RESOLVED INSTRUCTION
# =============================================================================

@dataclass(frozen=True)
class Instruction:
    """
    A fully resolved instruction, as handed to a backend.

    Attributes
    ----------
    name : str
        Operation name.
    params : tuple of float
        Rotation parameters.
    controls : tuple of QuditInfo
        Explicit controls followed by region controls.
    targets : tuple of QuditInfo
        Target qudits.
    is_adjoint : bool
        Final adjoint flag after composing with open adjoint regions.
    op : SpinOperatorTerm
        Optional Pauli payload (identity when unused).
    custom_operation : CustomOperation, optional
        Registry entry when ``name`` is not a built-in gate.
    """
    name: str
    params: Tuple[float, ...]
    controls: Tuple[QuditInfo, ...]
    targets: Tuple[QuditInfo, ...]
    is_adjoint: bool = False
    op: SpinOperatorTerm = IDENTITY_TERM
    custom_operation: Optional[CustomOperation] = None

    @property
    def is_custom(self) -> bool:
        return self.custom_operation is not None

    def target_matrix(self) -> np.ndarray:
        """Unitary on the targets, adjoint applied, controls not included."""
        if self.custom_operation is not None:
            m = self.custom_operation.matrix(self.params)
        else:
            m = get_gate_definition(self.name).matrix(self.params, len(self.targets), self.op)
        dim = int(np.prod([q.levels for q in self.targets]))
        if m.shape != (dim, dim):
            raise ValueError(
                f"Operation '{self.name}' has a {m.shape[0]}x{m.shape[1]} matrix but its "
                f"targets span a {dim}-dimensional space"
            )
        return m.conj().T if self.is_adjoint else m

    def __str__(self) -> str:
        adj = "<adj>" if self.is_adjoint else ""
        params = f"({', '.join(f'{p:.4g}' for p in self.params)})" if self.params else ""
        ctrls = f"[{', '.join(str(q.id) for q in self.controls)}] " if self.controls else ""
        targets = ", ".join(str(q.id) for q in self.targets)
        return f"{self.name}{adj}{params} {ctrls}{targets}"


# =============================================================================
# EXECUTION MANAGER
# =============================================================================

class ExecutionManager(ABC):
    """
    Base class for all backends: bookkeeping and dispatch live here, the
    effect of each instruction lives in the subclass.
    """

    def __init__(self, config: Optional[RuntimeConfig] = None):
        self.config = config if config is not None else get_runtime_config()
        self._pool = QuditIdPool()
        self._regions = RegionStack()
        self._context: Optional[ExecutionContext] = None
        self._registry = CustomOpRegistry.get_instance()
        self._measurements: Dict[str, List[int]] = {}

    # -------------------------------------------------------------------------
    # Qudit lifecycle
    # -------------------------------------------------------------------------

    def allocate_qudit(self, levels: int = 2) -> QuditInfo:
        """Allocate a qudit with ``levels`` basis states."""
        qudit = QuditInfo(levels, self._pool.allocate(levels))
        try:
            self._on_qudit_allocated(qudit)
        except Exception:
            self._pool.free(qudit.id)
            raise
        logger.debug("Allocated qudit %d (levels=%d)", qudit.id, levels)
        return qudit

    def return_qudit(self, qudit: QuditInfo) -> None:
        """Hand ``qudit`` back; its id becomes available for reuse."""
        self._require_live(qudit)
        if qudit in self._regions.effective_controls():
            raise ProtocolViolation(
                f"Qudit {qudit.id} is held by an open control region and cannot be returned"
            )
        self._on_qudit_returned(qudit)
        self._pool.free(qudit.id)
        logger.debug("Returned qudit %d", qudit.id)

    def live_qudits(self) -> List[int]:
        return self._pool.live_ids()

    def memory_leaked(self) -> bool:
        """True while some allocated qudit has not been returned."""
        return not self._pool.all_free()

    def check_for_leaks(self) -> bool:
        """
        Report qudits that were never returned.

        Emits a ``ResourceWarning`` naming the leaked ids (when the
        configuration asks for it) and returns whether anything leaked.
        """
        if not self.memory_leaked():
            return False
        if self.config.warn_on_leak:
            warnings.warn(
                f"{type(self).__name__}: {self._pool.num_live} qudit(s) were never "
                f"returned: ids {self._pool.live_ids()}",
                ResourceWarning,
                stacklevel=2,
            )
        return True

    def _require_live(self, qudit: QuditInfo) -> None:
        if not self._pool.is_live(qudit.id):
            raise ProtocolViolation(f"Qudit {qudit.id} is not allocated.")
        if self._pool.levels_of(qudit.id) != qudit.levels:
            raise ProtocolViolation(
                f"Qudit {qudit.id} was allocated with {self._pool.levels_of(qudit.id)} "
                f"levels but is referenced with {qudit.levels}."
            )

    # -------------------------------------------------------------------------
    # Execution context
    # -------------------------------------------------------------------------

    @property
    def execution_context(self) -> Optional[ExecutionContext]:
        return self._context

    def set_execution_context(self, ctx: ExecutionContext) -> None:
        """Bind ``ctx`` (by reference) for the duration of a run."""
        if ctx is None:
            raise ValueError("set_execution_context() needs a context; use reset_execution_context()")
        if self._context is not None:
            raise ProtocolViolation(
                f"An execution context ('{self._context.name}') is already bound; "
                f"reset it before binding '{ctx.name}'."
            )
        self._context = ctx
        self._on_context_set(ctx)
        logger.debug("Bound execution context %r", ctx.name)

    def reset_execution_context(self) -> None:
        """Unbind the current context. Does nothing when none is bound."""
        ctx = self._context
        if ctx is None:
            return
        try:
            self._on_context_reset(ctx)
        finally:
            self._context = None
        logger.debug("Released execution context %r", ctx.name)

    # -------------------------------------------------------------------------
    # Regions
    # -------------------------------------------------------------------------

    def start_adjoint_region(self) -> None:
        self._regions.begin_adjoint()

    def end_adjoint_region(self) -> None:
        self._regions.end_adjoint()

    def start_ctrl_region(self, control_qudits: Iterable[QuditInfo]) -> ControlFrame:
        controls = list(control_qudits)
        for q in controls:
            self._require_live(q)
        return self._regions.begin_control(controls)

    def end_ctrl_region(self, n_controls: int) -> None:
        self._regions.end_control(n_controls)

    @property
    def regions(self) -> RegionStack:
        return self._regions

    # -------------------------------------------------------------------------
    # Custom operations (process-wide)
    # -------------------------------------------------------------------------

    def register_operation(self, name: str, definition: OperationDefinition) -> CustomOperation:
        return self._registry.register(name, definition)

    def clear_registered_operations(self) -> None:
        self._registry.clear()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def initialize_state(self, targets: Sequence[QuditInfo],
                         state: Union[SimulationState, np.ndarray, Sequence[complex]],
                         precision: SimulationPrecision = SimulationPrecision.FP64) -> None:
        """
        Set ``targets`` to ``state``.

        ``state`` is either a ``SimulationState`` or a raw amplitude buffer
        interpreted with ``precision``.
        """
        targets = tuple(targets)
        if len(set(targets)) != len(targets):
            raise ProtocolViolation("initialize_state() lists a target qudit twice")
        for q in targets:
            self._require_live(q)
        dims = tuple(q.levels for q in targets)
        if isinstance(state, SimulationState):
            if state.dims != dims:
                raise ValueError(
                    f"State has qudit dimensions {list(state.dims)} but targets "
                    f"have {list(dims)}"
                )
            sim_state = state
        else:
            sim_state = SimulationState.from_buffer(state, dims, precision)
        self._initialize_state(targets, sim_state)

    def apply(self, gate_name: str, params: Sequence[float] = (),
              controls: Sequence[QuditInfo] = (), targets: Sequence[QuditInfo] = (),
              is_adjoint: bool = False, op: SpinOperatorTerm = IDENTITY_TERM) -> None:
        """Resolve one instruction against the open regions and dispatch it."""
        targets = tuple(targets)
        if not targets:
            raise ValueError(f"Operation '{gate_name}' needs at least one target")
        if len(set(targets)) != len(targets):
            raise ProtocolViolation(f"Operation '{gate_name}' lists a target qudit twice")

        final_adjoint = bool(is_adjoint) != self._regions.effective_adjoint()
        final_controls = unique_in_order(tuple(controls) + self._regions.effective_controls())

        for q in final_controls + targets:
            self._require_live(q)
        overlap = set(final_controls) & set(targets)
        if overlap:
            raise ProtocolViolation(
                f"Qudit(s) {sorted(q.id for q in overlap)} used as both control and "
                f"target of '{gate_name}'"
            )

        custom = None
        if is_builtin_gate(gate_name):
            get_gate_definition(gate_name).validate(params, len(targets))
        else:
            custom = self._registry.lookup(gate_name)
            if custom is None:
                raise UnknownOperation(gate_name)
            custom.check_params(params)

        instruction = Instruction(
            name=gate_name,
            params=tuple(float(p) for p in params),
            controls=final_controls,
            targets=targets,
            is_adjoint=final_adjoint,
            op=op,
            custom_operation=custom,
        )
        logger.debug("Dispatching %s", instruction)
        self._execute_instruction(instruction)

    def apply_noise(self, channel: KrausChannel, targets: Sequence[QuditInfo]) -> None:
        """Inject ``channel`` on ``targets``; open regions do not apply."""
        targets = tuple(targets)
        for q in targets:
            self._require_live(q)
        dim = int(np.prod([q.levels for q in targets]))
        if channel.dimension != dim:
            raise ValueError(
                f"Channel '{channel.name}' acts on dimension {channel.dimension} but "
                f"the targets span dimension {dim}"
            )
        self._apply_noise(channel, targets)

    def reset(self, target: QuditInfo) -> None:
        """Force ``target`` to its ground state."""
        self._require_live(target)
        self._reset_qudit(target)

    def measure(self, target: QuditInfo, register_name: str = "") -> int:
        """
        Measure ``target`` and return the observed basis index.

        The outcome is recorded under the global register and, when
        ``register_name`` is given, under that name too.
        """
        self._require_live(target)
        outcome = int(self._measure_qudit(target, register_name))
        if not 0 <= outcome < target.levels:
            raise ValueError(
                f"Backend returned outcome {outcome} for a {target.levels}-level qudit"
            )
        self._record_measurement(GLOBAL_REGISTER, outcome)
        if register_name:
            self._record_measurement(register_name, outcome)
        logger.debug("Measured qudit %d -> %d", target.id, outcome)
        return outcome

    def measure_spin_op(self, op: Union[SpinOperator, SpinOperatorTerm]) -> SpinMeasureResult:
        """Expectation value of ``op``, whose qubit indices are qudit ids."""
        if isinstance(op, SpinOperatorTerm):
            op = SpinOperator([op])
        for idx in op.qubits():
            if not self._pool.is_live(idx):
                raise ProtocolViolation(f"Spin operator acts on qudit {idx}, which is not allocated.")
            if self._pool.levels_of(idx) != 2:
                raise ValueError(f"Spin operators act on qubits; qudit {idx} has "
                                 f"{self._pool.levels_of(idx)} levels")
        result = self._measure_spin_op(op)
        if self._context is not None:
            self._context.expectation_value = result.expectation_value
        return result

    def flush_gate_queue(self) -> None:
        """Timing hint for backends that queue gates. Never needed for correctness."""

    # -------------------------------------------------------------------------
    # Measurement record
    # -------------------------------------------------------------------------

    def _record_measurement(self, register_name: str, outcome: int) -> None:
        if self._context is not None:
            self._context.record_measurement(register_name, outcome)
        else:
            self._measurements.setdefault(register_name, []).append(outcome)

    @property
    def measurement_record(self) -> Dict[str, List[int]]:
        """Outcomes recorded while no execution context was bound."""
        return self._measurements

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        End-of-life checks: regions must be balanced; leaked qudits are
        reported as a warning.
        """
        if not self._regions.is_balanced():
            raise ProtocolViolation(
                f"Manager closed with open regions (adjoint depth "
                f"{self._regions.adjoint_depth}, {self._regions.num_frames} control frame(s))."
            )
        self.check_for_leaks()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        return False

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _on_qudit_allocated(self, qudit: QuditInfo) -> None:
        pass

    @abstractmethod
    def _on_qudit_returned(self, qudit: QuditInfo) -> None:
        pass

    def _on_context_set(self, ctx: ExecutionContext) -> None:
        pass

    def _on_context_reset(self, ctx: ExecutionContext) -> None:
        pass

    @abstractmethod
    def _initialize_state(self, targets: Tuple[QuditInfo, ...], state: SimulationState) -> None:
        pass

    @abstractmethod
    def _execute_instruction(self, instruction: Instruction) -> None:
        pass

    @abstractmethod
    def _apply_noise(self, channel: KrausChannel, targets: Tuple[QuditInfo, ...]) -> None:
        pass

    @abstractmethod
    def _reset_qudit(self, target: QuditInfo) -> None:
        pass

    @abstractmethod
    def _measure_qudit(self, target: QuditInfo, register_name: str) -> int:
        pass

    @abstractmethod
    def _measure_spin_op(self, op: SpinOperator) -> SpinMeasureResult:
        pass

    @abstractmethod
    def synchronize(self) -> None:
        """Block until every previously issued instruction has taken effect."""
