"""
Simulation State Handles
========================

``initialize_state`` accepts either a raw amplitude buffer tagged with its
floating-point precision, or an opaque ``SimulationState`` handle produced by
a backend. Both are normalized here into a ``SimulationState``.
"""

import enum
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np


class SimulationPrecision(enum.Enum):
    """Floating-point precision of an amplitude buffer."""
    FP32 = "fp32"
    FP64 = "fp64"

    @property
    def dtype(self):
        return np.complex64 if self is SimulationPrecision.FP32 else np.complex128


@dataclass(frozen=True)
class SimulationState:
    """
    State vector over a list of qudits.

    Attributes
    ----------
    amplitudes : np.ndarray
        Flat amplitude vector; the first qudit is the most significant.
    dims : tuple of int
        Levels of each qudit, in order.
    precision : SimulationPrecision
        Precision the amplitudes were supplied in.
    """
    amplitudes: np.ndarray
    dims: Tuple[int, ...]
    precision: SimulationPrecision = SimulationPrecision.FP64

    def __post_init__(self):
        dims = tuple(int(d) for d in self.dims)
        amps = np.asarray(self.amplitudes, dtype=self.precision.dtype).reshape(-1)
        expected = int(np.prod(dims)) if dims else 1
        if amps.size != expected:
            raise ValueError(
                f"State buffer holds {amps.size} amplitudes, but qudit dimensions "
                f"{list(dims)} require {expected}"
            )
        norm = np.linalg.norm(amps)
        tol = 1e-4 if self.precision is SimulationPrecision.FP32 else 1e-8
        if not np.isclose(norm, 1.0, atol=tol):
            raise ValueError(f"State buffer is not normalized (norm = {norm:.6g})")
        object.__setattr__(self, "dims", dims)
        object.__setattr__(self, "amplitudes", amps)

    @classmethod
    def from_buffer(cls, buffer, dims: Sequence[int],
                    precision: SimulationPrecision = SimulationPrecision.FP64) -> "SimulationState":
        return cls(np.asarray(buffer), tuple(dims), SimulationPrecision(precision))

    @property
    def num_qudits(self) -> int:
        return len(self.dims)

    def as_tensor(self) -> np.ndarray:
        """Amplitudes in double precision, reshaped to one axis per qudit."""
        return self.amplitudes.astype(np.complex128).reshape(self.dims)
