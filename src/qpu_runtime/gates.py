"""
Built-in Gate Table
===================

Names the dispatcher resolves without consulting the custom operation
registry, together with the matrices the reference simulator uses for them.
All built-ins act on qubits (levels = 2); qudit gates of higher dimension
must be registered as custom operations.

=============  ========  =========  ==========================================
Name           Params    Targets    Matrix
=============  ========  =========  ==========================================
h              0         1          (X + Z)/√2
x, y, z        0         1          Pauli matrices
s, t           0         1          diag(1, i), diag(1, e^{iπ/4})
rx, ry, rz     1         1          exp(-i θ P / 2)
r1             1         1          diag(1, e^{iλ})
u3             3         1          (θ, φ, λ) Euler form
swap           0         2          |ab⟩ → |ba⟩
exp_pauli      1         any        exp(i θ P), P taken from the operator
                                    payload; term index k refers to the k-th
                                    target
=============  ========  =========  ==========================================
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from scipy.linalg import expm

from .errors import UnknownOperation
from .operators import IDENTITY_TERM, SpinOperatorTerm


# =============================================================================
# MATRIX BUILDERS
# =============================================================================

def _h(params, n_targets, op):
    return np.array([[1, 1], [1, -1]], dtype=complex) / np.sqrt(2)


def _x(params, n_targets, op):
    return np.array([[0, 1], [1, 0]], dtype=complex)


def _y(params, n_targets, op):
    return np.array([[0, -1j], [1j, 0]], dtype=complex)


def _z(params, n_targets, op):
    return np.array([[1, 0], [0, -1]], dtype=complex)


def _s(params, n_targets, op):
    return np.array([[1, 0], [0, 1j]], dtype=complex)


def _t(params, n_targets, op):
    return np.array([[1, 0], [0, np.exp(1j * np.pi / 4)]], dtype=complex)


def _rx(params, n_targets, op):
    c, s = np.cos(params[0] / 2), np.sin(params[0] / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=complex)


def _ry(params, n_targets, op):
    c, s = np.cos(params[0] / 2), np.sin(params[0] / 2)
    return np.array([[c, -s], [s, c]], dtype=complex)


def _rz(params, n_targets, op):
    half = params[0] / 2
    return np.array([[np.exp(-1j * half), 0], [0, np.exp(1j * half)]], dtype=complex)


def _r1(params, n_targets, op):
    return np.array([[1, 0], [0, np.exp(1j * params[0])]], dtype=complex)


def _u3(params, n_targets, op):
    theta, phi, lam = params
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return np.array(
        [
            [c, -np.exp(1j * lam) * s],
            [np.exp(1j * phi) * s, np.exp(1j * (phi + lam)) * c],
        ],
        dtype=complex,
    )


def _swap(params, n_targets, op):
    m = np.zeros((4, 4), dtype=complex)
    m[0, 0] = m[1, 2] = m[2, 1] = m[3, 3] = 1
    return m


def _exp_pauli(params, n_targets, op: SpinOperatorTerm):
    if abs(op.coefficient.imag) > 1e-12:
        raise ValueError(
            f"exp_pauli needs a Hermitian term, got coefficient {op.coefficient}"
        )
    if any(idx >= n_targets for idx in op.qubits()):
        raise ValueError(
            f"exp_pauli term {op.to_string()} refers to target positions beyond "
            f"the {n_targets} target(s) supplied"
        )
    generator = op.to_matrix(list(range(n_targets)))
    return expm(1j * params[0] * generator)


# =============================================================================
# GATE TABLE
# =============================================================================

@dataclass(frozen=True)
class GateDefinition:
    """
    A built-in gate.

    Attributes
    ----------
    name : str
        Dispatch name.
    num_params : int
        Required number of rotation parameters.
    num_targets : int, optional
        Required number of targets; None accepts any positive number.
    builder : callable
        ``builder(params, n_targets, op) -> np.ndarray`` unitary on the targets.
    """
    name: str
    num_params: int
    num_targets: Optional[int]
    builder: Callable[..., np.ndarray]

    def validate(self, params: Sequence[float], n_targets: int) -> None:
        if len(params) != self.num_params:
            raise ValueError(
                f"Gate '{self.name}' takes {self.num_params} parameter(s), got {len(params)}"
            )
        if self.num_targets is not None and n_targets != self.num_targets:
            raise ValueError(
                f"Gate '{self.name}' acts on {self.num_targets} target(s), got {n_targets}"
            )
        if n_targets < 1:
            raise ValueError(f"Gate '{self.name}' needs at least one target")

    def matrix(self, params: Sequence[float], n_targets: int,
               op: SpinOperatorTerm = IDENTITY_TERM) -> np.ndarray:
        self.validate(params, n_targets)
        return self.builder(list(params), n_targets, op)


BUILTIN_GATES: Dict[str, GateDefinition] = {
    "h": GateDefinition("h", 0, 1, _h),
    "x": GateDefinition("x", 0, 1, _x),
    "y": GateDefinition("y", 0, 1, _y),
    "z": GateDefinition("z", 0, 1, _z),
    "s": GateDefinition("s", 0, 1, _s),
    "t": GateDefinition("t", 0, 1, _t),
    "rx": GateDefinition("rx", 1, 1, _rx),
    "ry": GateDefinition("ry", 1, 1, _ry),
    "rz": GateDefinition("rz", 1, 1, _rz),
    "r1": GateDefinition("r1", 1, 1, _r1),
    "u3": GateDefinition("u3", 3, 1, _u3),
    "swap": GateDefinition("swap", 0, 2, _swap),
    "exp_pauli": GateDefinition("exp_pauli", 1, None, _exp_pauli),
}
"""Registry of built-in gates, keyed by dispatch name."""


def is_builtin_gate(name: str) -> bool:
    return name in BUILTIN_GATES


def get_gate_definition(name: str) -> GateDefinition:
    try:
        return BUILTIN_GATES[name]
    except KeyError:
        raise UnknownOperation(name) from None


def list_builtin_gates() -> List[str]:
    """Return the names of all built-in gates."""
    return list(BUILTIN_GATES.keys())
