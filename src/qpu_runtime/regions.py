"""
Region Stack
============

Tracks the nested adjoint and control scopes that kernel code opens around
blocks of instructions. The dispatcher consults it on every ``apply`` call;
backends never see region start/end events.

ADJOINT DEPTH
-------------
A counter. Each ``begin_adjoint()`` increments it and each ``end_adjoint()``
decrements it. Nested adjoints cancel in pairs, so an instruction issued
while the depth is odd is conjugate-transposed::

    depth 0  →  as written
    depth 1  →  adjoint
    depth 2  →  as written (U†† = U)

CONTROL FRAMES
--------------
A LIFO list. ``begin_control(qs)`` pushes a frame holding ``qs``;
``end_control(n)`` pops the most recent frame and requires that it holds
exactly ``n`` qudits. The effective controls of an instruction are the
qudits of all open frames, outermost frame first.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .errors import ProtocolViolation
from .qudits import QuditInfo


def unique_in_order(qudits: Iterable[QuditInfo]) -> Tuple[QuditInfo, ...]:
    """Drop repeated qudits, keeping the first occurrence of each."""
    seen = set()
    ordered = []
    for q in qudits:
        if q not in seen:
            seen.add(q)
            ordered.append(q)
    return tuple(ordered)


@dataclass(frozen=True)
class ControlFrame:
    """Handle returned by ``RegionStack.begin_control``."""
    qudits: Tuple[QuditInfo, ...]

    @property
    def size(self) -> int:
        return len(self.qudits)


class RegionStack:
    """Adjoint depth counter plus a stack of control frames."""

    def __init__(self):
        self._adjoint_depth = 0
        self._frames: List[ControlFrame] = []

    # -------------------------------------------------------------------------
    # Adjoint regions
    # -------------------------------------------------------------------------

    def begin_adjoint(self) -> None:
        self._adjoint_depth += 1

    def end_adjoint(self) -> None:
        if self._adjoint_depth == 0:
            raise ProtocolViolation("end_adjoint() called with no open adjoint region.")
        self._adjoint_depth -= 1

    @property
    def adjoint_depth(self) -> int:
        return self._adjoint_depth

    def effective_adjoint(self) -> bool:
        """True when an odd number of adjoint regions is open."""
        return self._adjoint_depth % 2 == 1

    # -------------------------------------------------------------------------
    # Control regions
    # -------------------------------------------------------------------------

    def begin_control(self, qudits: Iterable[QuditInfo]) -> ControlFrame:
        frame = ControlFrame(unique_in_order(qudits))
        self._frames.append(frame)
        return frame

    def end_control(self, n_controls: int) -> ControlFrame:
        if not self._frames:
            raise ProtocolViolation(
                f"end_control({n_controls}) called with no open control region."
            )
        top = self._frames[-1]
        if top.size != n_controls:
            raise ProtocolViolation(
                f"end_control({n_controls}) does not match the innermost control "
                f"region, which holds {top.size} qudit(s)."
            )
        return self._frames.pop()

    @property
    def num_frames(self) -> int:
        return len(self._frames)

    def effective_controls(self) -> Tuple[QuditInfo, ...]:
        """Qudits of every open control frame, outermost first, no repeats."""
        return unique_in_order(q for frame in self._frames for q in frame.qudits)

    def is_balanced(self) -> bool:
        """True when no adjoint or control region is open."""
        return self._adjoint_depth == 0 and not self._frames
