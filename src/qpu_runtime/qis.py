"""
Kernel Helpers
==============

Thin functions that hand-written kernels use instead of calling the
execution manager directly. Each call resolves the current manager with
``get_execution_manager()``, so the same kernel runs on whichever backend
the thread (or the override) resolves to.

Example
-------
>>> from qpu_runtime import qis
>>> with qis.qvector(2) as q:
...     qis.h(q[0])
...     with qis.control_region(q[0]):
...         qis.x(q[1])
...     bits = [qis.mz(qubit) for qubit in q]

MEASUREMENT RESULTS
-------------------
In library mode (``RuntimeConfig.library_mode``, the default) ``mz`` returns a
``MeasureResult``; branch on it with ``result.observe()``. With library mode
off it returns a plain ``bool``, as lowered kernels expect.
"""

from contextlib import contextmanager
from typing import Iterator, List, Sequence, Union

from .config import get_runtime_config
from .operators import IDENTITY_TERM, KrausChannel, SpinOperatorTerm
from .qudits import QuditInfo
from .registry import get_execution_manager
from .results import MeasureResult


Controls = Sequence[QuditInfo]


# =============================================================================
# ALLOCATION
# =============================================================================

def qalloc(levels: int = 2) -> QuditInfo:
    return get_execution_manager().allocate_qudit(levels)


def qfree(qudit: QuditInfo) -> None:
    get_execution_manager().return_qudit(qudit)


@contextmanager
def qvector(size: int, levels: int = 2) -> Iterator[List[QuditInfo]]:
    """Allocate ``size`` qudits for the body and return them afterwards (last first)."""
    if size < 1:
        raise ValueError(f"qvector size must be positive, got {size}")
    em = get_execution_manager()
    qudits: List[QuditInfo] = []
    try:
        for _ in range(size):
            qudits.append(em.allocate_qudit(levels))
        yield qudits
    finally:
        for q in reversed(qudits):
            em.return_qudit(q)


# =============================================================================
# REGIONS
# =============================================================================

@contextmanager
def adjoint_region() -> Iterator[None]:
    """
    Every operation issued in the body is applied as its adjoint.

    Each instruction is flipped and dispatched as it is issued; the body's
    order is kept. To invert a block, write its body in reverse:

    >>> h(q); t(q)
    >>> with adjoint_region():
    ...     t(q); h(q)
    """
    em = get_execution_manager()
    em.start_adjoint_region()
    try:
        yield
    finally:
        em.end_adjoint_region()


@contextmanager
def control_region(*qudits: QuditInfo) -> Iterator[None]:
    """Every operation issued in the body is controlled on ``qudits``."""
    em = get_execution_manager()
    frame = em.start_ctrl_region(qudits)
    try:
        yield
    finally:
        em.end_ctrl_region(frame.size)


# =============================================================================
# GATES
# =============================================================================

def _apply(name: str, targets: Sequence[QuditInfo], params: Sequence[float] = (),
           controls: Controls = (), adjoint: bool = False,
           op: SpinOperatorTerm = IDENTITY_TERM) -> None:
    get_execution_manager().apply(name, params, controls, targets, adjoint, op)


def h(target: QuditInfo, controls: Controls = ()) -> None:
    _apply("h", [target], controls=controls)


def x(target: QuditInfo, controls: Controls = ()) -> None:
    _apply("x", [target], controls=controls)


def y(target: QuditInfo, controls: Controls = ()) -> None:
    _apply("y", [target], controls=controls)


def z(target: QuditInfo, controls: Controls = ()) -> None:
    _apply("z", [target], controls=controls)


def s(target: QuditInfo, controls: Controls = (), adjoint: bool = False) -> None:
    _apply("s", [target], controls=controls, adjoint=adjoint)


def t(target: QuditInfo, controls: Controls = (), adjoint: bool = False) -> None:
    _apply("t", [target], controls=controls, adjoint=adjoint)


def rx(theta: float, target: QuditInfo, controls: Controls = ()) -> None:
    _apply("rx", [target], [theta], controls)


def ry(theta: float, target: QuditInfo, controls: Controls = ()) -> None:
    _apply("ry", [target], [theta], controls)


def rz(theta: float, target: QuditInfo, controls: Controls = ()) -> None:
    _apply("rz", [target], [theta], controls)


def r1(theta: float, target: QuditInfo, controls: Controls = ()) -> None:
    _apply("r1", [target], [theta], controls)


def u3(theta: float, phi: float, lam: float, target: QuditInfo, controls: Controls = ()) -> None:
    _apply("u3", [target], [theta, phi, lam], controls)


def swap(a: QuditInfo, b: QuditInfo, controls: Controls = ()) -> None:
    _apply("swap", [a, b], controls=controls)


def exp_pauli(theta: float, targets: Sequence[QuditInfo], word: Union[str, SpinOperatorTerm],
              controls: Controls = ()) -> None:
    """
    Apply exp(iθP) where P is ``word`` laid over ``targets``.

    A string word is read position by position ("XZ" puts X on the first
    target and Z on the second).
    """
    term = SpinOperatorTerm.from_word(word) if isinstance(word, str) else word
    _apply("exp_pauli", targets, [theta], controls, op=term)


def custom_op(name: str, targets: Sequence[QuditInfo], params: Sequence[float] = (),
              controls: Controls = (), adjoint: bool = False) -> None:
    """Apply an operation registered with ``register_operation``."""
    _apply(name, targets, params, controls, adjoint)


# =============================================================================
# NOISE, RESET, MEASUREMENT
# =============================================================================

def apply_noise(channel: KrausChannel, *targets: QuditInfo) -> None:
    get_execution_manager().apply_noise(channel, targets)


def reset(target: QuditInfo) -> None:
    get_execution_manager().reset(target)


def mz(target: QuditInfo, register_name: str = "") -> Union[MeasureResult, bool]:
    """Measure ``target`` in the computational basis."""
    outcome = get_execution_manager().measure(target, register_name)
    if get_runtime_config().library_mode:
        return MeasureResult(outcome)
    return outcome != 0
