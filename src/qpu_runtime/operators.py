"""
Operator Payloads
=================

Data types that travel through the dispatcher alongside instruction names:

- ``SpinOperatorTerm`` / ``SpinOperator``: weighted Pauli strings. A single
  term is the optional payload of ``apply`` (e.g. for ``exp_pauli``); a full
  operator is what ``measure_spin_op`` takes.
- ``KrausChannel``: a completely-positive trace-preserving map given by its
  Kraus operators, the payload of ``apply_noise``.

The dispatcher does not interpret these objects; the builders and
conversions below exist for backends and kernel authors.

PAULI STRINGS
-------------
A term is a complex coefficient times a tensor product of single-qubit Paulis
on named qubit indices, e.g. ``0.5 · X0 Z2``. Indices absent from the string
carry the identity. Products of terms use the single-qubit algebra::

    XY = iZ    YZ = iX    ZX = iY
    YX = -iZ   ZY = -iX   XZ = -iY

KRAUS CHANNELS
--------------
A channel ρ → Σₖ Kₖ ρ Kₖ† is trace preserving iff Σₖ Kₖ†Kₖ = I. The standard
single-qubit channels follow the Pauli-channel forms:

    Bit flip:           ρ → (1-p)ρ + p XρX
    Phase flip:         ρ → (1-p)ρ + p ZρZ
    Depolarizing:       ρ → (1-p)ρ + (p/3)(XρX + YρY + ZρZ)
    Amplitude damping:  K₀ = [[1, 0], [0, √(1-γ)]],  K₁ = [[0, √γ], [0, 0]]
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

try:
    from qutip import Qobj, qeye, sigmax, sigmay, sigmaz, tensor
except ImportError:
    raise ImportError(
        "QuTiP is required for operator construction. Install with: pip install qutip"
    )


PauliString = Tuple[Tuple[int, str], ...]

_PAULI_LETTERS = ("I", "X", "Y", "Z")

# (a, b) -> (phase, letter) for the product a·b
_PAULI_PRODUCT: Dict[Tuple[str, str], Tuple[complex, str]] = {
    ("X", "Y"): (1j, "Z"), ("Y", "X"): (-1j, "Z"),
    ("Y", "Z"): (1j, "X"), ("Z", "Y"): (-1j, "X"),
    ("Z", "X"): (1j, "Y"), ("X", "Z"): (-1j, "Y"),
}


def _pauli_qobj(letter: str) -> Qobj:
    return {"I": qeye(2), "X": sigmax(), "Y": sigmay(), "Z": sigmaz()}[letter]


def _multiply_letters(a: str, b: str) -> Tuple[complex, str]:
    if a == "I":
        return 1.0, b
    if b == "I":
        return 1.0, a
    if a == b:
        return 1.0, "I"
    return _PAULI_PRODUCT[(a, b)]


def _normalize(paulis: Iterable[Tuple[int, str]]) -> PauliString:
    """Sort by qubit index and drop identity factors."""
    merged: Dict[int, str] = {}
    for idx, letter in paulis:
        letter = letter.upper()
        if letter not in _PAULI_LETTERS:
            raise ValueError(f"Unknown Pauli letter: {letter}. Use one of {_PAULI_LETTERS}")
        if idx < 0:
            raise ValueError(f"Qubit indices are non-negative, got {idx}")
        if idx in merged:
            raise ValueError(f"Qubit index {idx} appears twice in a Pauli string")
        merged[idx] = letter
    return tuple((idx, merged[idx]) for idx in sorted(merged) if merged[idx] != "I")


# =============================================================================
# SPIN OPERATORS
# =============================================================================

@dataclass(frozen=True)
class SpinOperatorTerm:
    """
    One weighted Pauli string.

    Attributes
    ----------
    paulis : tuple of (int, str)
        Non-identity factors, sorted by qubit index.
    coefficient : complex
        Scalar weight of the term.
    """
    paulis: PauliString = ()
    coefficient: complex = 1.0

    @classmethod
    def from_word(cls, word: str, coefficient: complex = 1.0) -> "SpinOperatorTerm":
        """Build a term from a dense word such as ``"XIZ"`` (index = position)."""
        return cls(_normalize(enumerate(word)), coefficient)

    def __post_init__(self):
        object.__setattr__(self, "paulis", _normalize(self.paulis))
        object.__setattr__(self, "coefficient", complex(self.coefficient))

    def is_identity(self) -> bool:
        return not self.paulis

    def qubits(self) -> List[int]:
        return [idx for idx, _ in self.paulis]

    def letter_at(self, idx: int) -> str:
        return dict(self.paulis).get(idx, "I")

    def to_string(self) -> str:
        """Compact label, e.g. ``"X0 Z2"``; the identity prints as ``"I"``."""
        if not self.paulis:
            return "I"
        return " ".join(f"{letter}{idx}" for idx, letter in self.paulis)

    def __str__(self) -> str:
        return f"{self.coefficient:.4g} * {self.to_string()}"

    def __mul__(self, other):
        if isinstance(other, SpinOperatorTerm):
            factors = dict(self.paulis)
            phase = self.coefficient * other.coefficient
            for idx, letter in other.paulis:
                p, factors[idx] = _multiply_letters(factors.get(idx, "I"), letter)
                phase *= p
            return SpinOperatorTerm(tuple(factors.items()), phase)
        if isinstance(other, SpinOperator):
            return SpinOperator([self]) * other
        if isinstance(other, (int, float, complex)):
            return SpinOperatorTerm(self.paulis, self.coefficient * other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, (int, float, complex)):
            return SpinOperatorTerm(self.paulis, self.coefficient * other)
        return NotImplemented

    def __add__(self, other):
        return SpinOperator([self]) + other

    __radd__ = __add__

    def __neg__(self):
        return SpinOperatorTerm(self.paulis, -self.coefficient)

    def __sub__(self, other):
        return SpinOperator([self]) + (-other)

    def to_qobj(self, qubit_order: Sequence[int]) -> Qobj:
        """
        Matrix of the term (coefficient included) on the qubits ``qubit_order``.

        The first entry of ``qubit_order`` is the most significant tensor
        factor. Every qubit the term acts on must be listed.
        """
        missing = set(self.qubits()) - set(qubit_order)
        if missing:
            raise ValueError(f"Term {self.to_string()} acts on qubits {sorted(missing)} "
                             f"that are not in the requested order {list(qubit_order)}")
        if not qubit_order:
            raise ValueError("qubit_order must name at least one qubit")
        factors = [_pauli_qobj(self.letter_at(idx)) for idx in qubit_order]
        return self.coefficient * tensor(factors)

    def to_matrix(self, qubit_order: Sequence[int]) -> np.ndarray:
        return self.to_qobj(qubit_order).full()


class SpinOperator:
    """
    A weighted sum of Pauli strings with like terms merged.

    Examples
    --------
    >>> h = 0.5 * spin_z(0) + 0.5 * spin_z(0) * spin_z(1)
    >>> h.num_terms
    2
    >>> sorted(h.qubits())
    [0, 1]
    """

    def __init__(self, terms: Iterable[SpinOperatorTerm] = ()):
        self._terms: Dict[PauliString, complex] = {}
        for term in terms:
            self._accumulate(term)

    def _accumulate(self, term: SpinOperatorTerm) -> None:
        self._terms[term.paulis] = self._terms.get(term.paulis, 0.0) + term.coefficient

    @property
    def num_terms(self) -> int:
        return len(self._terms)

    def __iter__(self) -> Iterator[SpinOperatorTerm]:
        for paulis, coeff in self._terms.items():
            yield SpinOperatorTerm(paulis, coeff)

    def __len__(self) -> int:
        return len(self._terms)

    def qubits(self) -> List[int]:
        return sorted({idx for paulis in self._terms for idx, _ in paulis})

    def __add__(self, other):
        if isinstance(other, (int, float, complex)):
            other = SpinOperatorTerm((), other)
        if isinstance(other, SpinOperatorTerm):
            result = SpinOperator(self)
            result._accumulate(other)
            return result
        if isinstance(other, SpinOperator):
            result = SpinOperator(self)
            for term in other:
                result._accumulate(term)
            return result
        return NotImplemented

    __radd__ = __add__

    def __neg__(self):
        return SpinOperator(-term for term in self)

    def __sub__(self, other):
        return self + (-other)

    def __mul__(self, other):
        if isinstance(other, (int, float, complex)):
            return SpinOperator(term * other for term in self)
        if isinstance(other, SpinOperatorTerm):
            other = SpinOperator([other])
        if isinstance(other, SpinOperator):
            return SpinOperator(a * b for a in self for b in other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, (int, float, complex)):
            return SpinOperator(term * other for term in self)
        return NotImplemented

    def __eq__(self, other):
        if not isinstance(other, SpinOperator):
            return NotImplemented
        keys = set(self._terms) | set(other._terms)
        return all(np.isclose(self._terms.get(k, 0.0), other._terms.get(k, 0.0)) for k in keys)

    def __repr__(self) -> str:
        body = " + ".join(str(term) for term in self) or "0"
        return f"SpinOperator({body})"

    def to_qobj(self, qubit_order: Optional[Sequence[int]] = None) -> Qobj:
        """Sum of the term matrices on ``qubit_order`` (default: sorted qubits)."""
        order = list(qubit_order) if qubit_order is not None else (self.qubits() or [0])
        total = None
        for term in self:
            m = term.to_qobj(order)
            total = m if total is None else total + m
        if total is None:
            return 0 * tensor([qeye(2)] * len(order))
        return total


def spin_i(idx: int = 0) -> SpinOperatorTerm:
    """Identity term (``idx`` is accepted for symmetry and ignored)."""
    return SpinOperatorTerm(((idx, "I"),))


def spin_x(idx: int) -> SpinOperatorTerm:
    return SpinOperatorTerm(((idx, "X"),))


def spin_y(idx: int) -> SpinOperatorTerm:
    return SpinOperatorTerm(((idx, "Y"),))


def spin_z(idx: int) -> SpinOperatorTerm:
    return SpinOperatorTerm(((idx, "Z"),))


IDENTITY_TERM = SpinOperatorTerm()


# =============================================================================
# KRAUS CHANNELS
# =============================================================================

@dataclass(eq=False)
class KrausChannel:
    """
    A noise channel given by its Kraus operators.

    Attributes
    ----------
    operators : list of np.ndarray
        Square matrices of equal shape with Σ K†K = I.
    name : str
        Label used in diagnostics and noise models.
    """
    operators: List[np.ndarray] = field(default_factory=list)
    name: str = "kraus"

    def __post_init__(self):
        if not self.operators:
            raise ValueError("A Kraus channel needs at least one operator")
        ops = [np.asarray(op, dtype=complex) for op in self.operators]
        shape = ops[0].shape
        if len(shape) != 2 or shape[0] != shape[1]:
            raise ValueError(f"Kraus operators must be square matrices, got shape {shape}")
        for op in ops:
            if op.shape != shape:
                raise ValueError(f"All Kraus operators must share shape {shape}, got {op.shape}")
        completeness = sum(op.conj().T @ op for op in ops)
        if not np.allclose(completeness, np.eye(shape[0]), atol=1e-8):
            raise ValueError(f"Kraus operators of channel '{self.name}' are not trace preserving")
        self.operators = ops

    @property
    def dimension(self) -> int:
        """Dimension of the space the channel acts on."""
        return self.operators[0].shape[0]

    def __len__(self) -> int:
        return len(self.operators)


def _check_probability(p: float, name: str) -> None:
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {p}")


def bit_flip_channel(p: float) -> KrausChannel:
    _check_probability(p, "Bit-flip probability")
    return KrausChannel(
        [np.sqrt(1 - p) * np.eye(2), np.sqrt(p) * sigmax().full()],
        name="bit_flip",
    )


def phase_flip_channel(p: float) -> KrausChannel:
    _check_probability(p, "Phase-flip probability")
    return KrausChannel(
        [np.sqrt(1 - p) * np.eye(2), np.sqrt(p) * sigmaz().full()],
        name="phase_flip",
    )


def depolarizing_channel(p: float) -> KrausChannel:
    _check_probability(p, "Depolarizing probability")
    return KrausChannel(
        [
            np.sqrt(1 - p) * np.eye(2),
            np.sqrt(p / 3) * sigmax().full(),
            np.sqrt(p / 3) * sigmay().full(),
            np.sqrt(p / 3) * sigmaz().full(),
        ],
        name="depolarizing",
    )


def amplitude_damping_channel(gamma: float) -> KrausChannel:
    _check_probability(gamma, "Damping probability")
    return KrausChannel(
        [
            np.array([[1, 0], [0, np.sqrt(1 - gamma)]]),
            np.array([[0, np.sqrt(gamma)], [0, 0]]),
        ],
        name="amplitude_damping",
    )
