"""
Execution Context and Noise Model
=================================

An ``ExecutionContext`` describes one run of a kernel: what kind of run it is
("sample", "observe", "trace", ...), how many shots, which noise model, plus
backend-specific options. It is owned by the caller. A manager only holds a
reference to it between ``set_execution_context`` and
``reset_execution_context``, and backends write their results into it.

NOISE MODEL
-----------
A ``NoiseModel`` attaches Kraus channels to operation names. A backend that
supports it applies the channels right after each matching instruction::

    noise = NoiseModel()
    noise.add_channel("x", bit_flip_channel(0.01))            # every x gate
    noise.add_channel("h", depolarizing_channel(0.02), [0])   # h on qudit 0 only
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .operators import KrausChannel


GLOBAL_REGISTER = "__global__"
"""Register that receives every measurement outcome, named or not."""


class NoiseModel:
    """Mapping from operation name (and optionally qudit ids) to channels."""

    def __init__(self):
        self._channels: Dict[str, List[Tuple[Optional[Tuple[int, ...]], KrausChannel]]] = {}

    def add_channel(self, op_name: str, channel: KrausChannel,
                    qudit_ids: Optional[Sequence[int]] = None) -> None:
        """
        Attach ``channel`` to ``op_name``.

        With ``qudit_ids`` the channel only fires when the instruction's
        targets are exactly those ids, in order.
        """
        key = tuple(qudit_ids) if qudit_ids is not None else None
        self._channels.setdefault(op_name, []).append((key, channel))

    def get_channels(self, op_name: str, qudit_ids: Sequence[int]) -> List[KrausChannel]:
        ids = tuple(qudit_ids)
        return [ch for key, ch in self._channels.get(op_name, []) if key is None or key == ids]

    def is_empty(self) -> bool:
        return not self._channels


@dataclass
class ExecutionContext:
    """
    Configuration and result slots for one kernel run.

    Attributes
    ----------
    name : str
        Kind of run: "sample", "observe", "trace", "extract-state", ...
    shots : int
        Number of shots requested by the caller. Spin-operator
        measurements sample each term this many times.
    noise_model : NoiseModel, optional
        Channels to inject after matching instructions.
    seed : int, optional
        Seed a simulator should use for this run.
    options : dict
        Backend-specific settings.
    measurements : dict
        Register name -> list of outcomes, filled during the run.
    expectation_value : float, optional
        Result of an "observe" run.
    trace : list
        Instructions recorded by tracing backends.
    """
    name: str = "sample"
    shots: int = 1
    noise_model: Optional[NoiseModel] = None
    seed: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)
    measurements: Dict[str, List[int]] = field(default_factory=dict)
    expectation_value: Optional[float] = None
    trace: List[Any] = field(default_factory=list)

    def __post_init__(self):
        if self.shots < 1:
            raise ValueError(f"shots must be positive, got {self.shots}")

    def record_measurement(self, register_name: str, outcome: int) -> None:
        self.measurements.setdefault(register_name, []).append(outcome)

    def register_names(self) -> List[str]:
        """Named registers, excluding the global one."""
        return [name for name in self.measurements if name != GLOBAL_REGISTER]
