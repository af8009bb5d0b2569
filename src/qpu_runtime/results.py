"""
Measurement Results
===================

DEFERRED MEASUREMENT RESULTS (library mode)
-------------------------------------------
Without an ahead-of-time lowering step, a kernel's measurement returns a
``MeasureResult``: the raw observed code plus a unique identity.

- ``int(result)`` gives the raw code. No side effect.
- ``result.observe()`` asks the *boolean-conversion hook* for a truth value.
  The hook is called exactly once per ``observe()`` call, with the raw code.
  It is the point where a backend may defer its collapse/sampling decision
  until the value actually drives a branch.

Implicit truth testing (``if result:``) is refused with ``TypeError``: the
conversion has side effects, so it has to be spelled out.

Under ahead-of-time lowering the wrapper is not used and kernels receive a
plain ``bool``.

SPIN-OPERATOR MEASUREMENTS
--------------------------
``SpinMeasureResult`` pairs the combined expectation value with the
per-term record the backend produced, and the raw shot counts when the
backend sampled the operator.
"""

import itertools
import threading
from typing import Callable, Dict, NamedTuple, Optional


BoolConversionHook = Callable[[int], bool]


def _default_bool_conversion(code: int) -> bool:
    return code != 0


_bool_conversion_hook: BoolConversionHook = _default_bool_conversion
_id_counter = itertools.count()
_id_lock = threading.Lock()


def set_bool_conversion_hook(hook: BoolConversionHook) -> BoolConversionHook:
    """Install ``hook`` and return the previously installed one."""
    global _bool_conversion_hook
    previous = _bool_conversion_hook
    _bool_conversion_hook = hook
    return previous


def reset_bool_conversion_hook() -> None:
    """Restore the default hook (non-zero code means True)."""
    set_bool_conversion_hook(_default_bool_conversion)


def next_measurement_id() -> int:
    """Process-unique identity for a new measurement result."""
    with _id_lock:
        return next(_id_counter)


class MeasureResult:
    """Raw measurement code plus identity, with explicit truth conversion."""

    __slots__ = ("_code", "_unique_id")

    def __init__(self, code: int, unique_id: int = None):
        self._code = int(code)
        self._unique_id = next_measurement_id() if unique_id is None else unique_id

    @property
    def code(self) -> int:
        return self._code

    @property
    def unique_id(self) -> int:
        return self._unique_id

    def __int__(self) -> int:
        return self._code

    __index__ = __int__

    def observe(self) -> bool:
        """Truth value of the outcome, decided by the boolean-conversion hook."""
        return bool(_bool_conversion_hook(self._code))

    def __bool__(self):
        raise TypeError(
            "MeasureResult has no implicit truth value; call .observe() "
            "(invokes the boolean-conversion hook) or int() for the raw code."
        )

    def __eq__(self, other):
        if isinstance(other, MeasureResult):
            return self._code == other._code and self._unique_id == other._unique_id
        return NotImplemented

    def __hash__(self):
        return hash((self._code, self._unique_id))

    def __repr__(self) -> str:
        return f"MeasureResult(code={self._code}, unique_id={self._unique_id})"


class SpinMeasureResult(NamedTuple):
    """
    Expectation value of a spin operator plus the per-term record.

    ``term_results`` maps each term label to its exact expectation value.
    ``term_samples`` maps each non-identity term label to bitstring counts
    from measuring its qubits in the term's basis (first qubit leftmost);
    it is None when the backend took no samples.
    """
    expectation_value: float
    term_results: Dict[str, float]
    term_samples: Optional[Dict[str, Dict[str, int]]] = None
