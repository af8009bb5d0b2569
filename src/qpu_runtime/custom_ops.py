"""
Custom Operation Registry
=========================

User-defined unitaries are registered under a name and later dispatched by
that name, exactly like a built-in gate.

There is ONE registry per process. Every execution manager, on every thread,
reads and writes the same mapping, so it is the only piece of runtime state
guarded by a lock. Registration is an upsert (the last definition under a
name wins) and ``clear()`` empties the whole mapping for everybody at once.

Definitions
-----------
A ``CustomOperation`` wraps a *generator*: a function from the rotation
parameters to the unitary matrix on the targets. Fixed matrices are wrapped
in a constant generator by ``CustomOperation.from_matrix``.

Example
-------
>>> import numpy as np
>>> sqrt_x = 0.5 * np.array([[1 + 1j, 1 - 1j], [1 - 1j, 1 + 1j]])
>>> op = register_operation("sqrt_x", sqrt_x)
>>> CustomOpRegistry.get_instance().lookup("sqrt_x").name
'sqrt_x'
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomOperation:
    """
    A named unitary, possibly parameterized.

    Attributes
    ----------
    name : str
        Registry key.
    generator : callable
        ``generator(params) -> np.ndarray`` returning a square unitary.
    num_params : int, optional
        Expected number of parameters; None skips the check.
    """
    name: str
    generator: Callable[[List[float]], np.ndarray]
    num_params: Optional[int] = None

    @classmethod
    def from_matrix(cls, name: str, matrix) -> "CustomOperation":
        fixed = np.array(matrix, dtype=complex)
        _check_unitary(name, fixed)
        return cls(name=name, generator=lambda params: fixed, num_params=0)

    def check_params(self, params: Sequence[float]) -> None:
        if self.num_params is not None and len(params) != self.num_params:
            raise ValueError(
                f"Custom operation '{self.name}' takes {self.num_params} "
                f"parameter(s), got {len(params)}"
            )

    def matrix(self, params: Sequence[float] = ()) -> np.ndarray:
        """Evaluate the generator and check that the result is unitary."""
        params = list(params)
        self.check_params(params)
        m = np.asarray(self.generator(params), dtype=complex)
        _check_unitary(self.name, m)
        return m


def _check_unitary(name: str, m: np.ndarray) -> None:
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise ValueError(f"Custom operation '{name}' must be a square matrix, got shape {m.shape}")
    if not np.allclose(m.conj().T @ m, np.eye(m.shape[0]), atol=1e-8):
        raise ValueError(f"Custom operation '{name}' is not unitary")


OperationDefinition = Union[CustomOperation, np.ndarray, Sequence, Callable[[List[float]], np.ndarray]]


def as_custom_operation(name: str, definition: OperationDefinition) -> CustomOperation:
    """Wrap any accepted definition form into a ``CustomOperation`` named ``name``."""
    if isinstance(definition, CustomOperation):
        return definition if definition.name == name else replace(definition, name=name)
    if callable(definition):
        return CustomOperation(name=name, generator=definition)
    return CustomOperation.from_matrix(name, definition)


class CustomOpRegistry:
    """Process-wide, lock-guarded mapping from operation name to definition."""

    _instance: Optional["CustomOpRegistry"] = None
    _instance_lock = threading.Lock()

    def __init__(self):
        self._lock = threading.RLock()
        self._operations: Dict[str, CustomOperation] = {}

    @classmethod
    def get_instance(cls) -> "CustomOpRegistry":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def register(self, name: str, definition: OperationDefinition) -> CustomOperation:
        if not name:
            raise ValueError("Custom operations need a non-empty name")
        op = as_custom_operation(name, definition)
        with self._lock:
            replaced = name in self._operations
            self._operations[name] = op
        logger.debug("Registered custom operation %r%s", name, " (replaced)" if replaced else "")
        return op

    def lookup(self, name: str) -> Optional[CustomOperation]:
        with self._lock:
            return self._operations.get(name)

    def clear(self) -> None:
        with self._lock:
            self._operations.clear()
        logger.debug("Cleared custom operation registry")

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._operations)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._operations

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)


def register_operation(name: str, definition: OperationDefinition) -> CustomOperation:
    """Register ``definition`` under ``name`` in the process-wide registry."""
    return CustomOpRegistry.get_instance().register(name, definition)
