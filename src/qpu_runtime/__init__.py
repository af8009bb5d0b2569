# QPU Runtime: Execution-Manager Layer for Quantum Kernels
#
# Mediates between generated (or hand-written) kernel code and pluggable
# execution backends. The runtime owns the protocol: qudit identities, nested
# adjoint/control regions, instruction dispatch, context binding, the
# process-wide custom-operation registry and per-thread manager resolution.
#
# Architecture:
#   Bookkeeping:  qudits.py (identity pool), regions.py (region stack)
#   Dispatch:     manager.py (ExecutionManager base class and hooks)
#   Resolution:   registry.py (per-thread managers, named factories)
#   Payloads:     gates.py, custom_ops.py, operators.py, state.py
#   Backends:     backends/ (state_vector, tracer)
#   Kernel API:   qis.py

__version__ = "0.1.0"

from .config import RuntimeConfig, get_runtime_config, load_runtime_config, set_runtime_config
from .errors import ProtocolViolation, QPURuntimeError, ResourceExhaustion, UnknownOperation
from .qudits import QuditIdPool, QuditInfo
from .regions import ControlFrame, RegionStack
from .operators import (
    IDENTITY_TERM,
    KrausChannel,
    SpinOperator,
    SpinOperatorTerm,
    amplitude_damping_channel,
    bit_flip_channel,
    depolarizing_channel,
    phase_flip_channel,
    spin_i,
    spin_x,
    spin_y,
    spin_z,
)
from .gates import BUILTIN_GATES, get_gate_definition, is_builtin_gate, list_builtin_gates
from .custom_ops import CustomOperation, CustomOpRegistry, register_operation
from .state import SimulationPrecision, SimulationState
from .execution_context import GLOBAL_REGISTER, ExecutionContext, NoiseModel
from .results import (
    MeasureResult,
    SpinMeasureResult,
    reset_bool_conversion_hook,
    set_bool_conversion_hook,
)
from .manager import ExecutionManager, Instruction
from .registry import (
    clear_execution_manager_override,
    get_execution_manager,
    get_named_execution_manager_factory,
    get_registered_execution_manager,
    register_execution_manager,
    registered_execution_managers,
    reset_thread_execution_manager,
    set_execution_manager,
    unregister_execution_manager,
)
from . import backends
from .backends import StateVectorManager, TracerManager
