"""
Qudit Identity Pool
===================

Qudits are referred to by small integer identifiers handed out by the
execution manager. This module owns the bookkeeping of those identifiers.

LIFECYCLE
---------

An id is *live* from the moment ``allocate()`` returns it until it is passed
to ``free()``::

    allocate() ──► live ──► free() ──► recycled (FIFO) ──► allocate() ...

Invariants:

1. ``allocate()`` never returns an id that is currently live.
2. An id is never freed twice, and never freed without having been allocated
   (both are ``ProtocolViolation``).
3. Freed ids are reused oldest-first, so a given sequence of allocate/free
   calls always yields the same ids.

Leak detection (``all_free()`` returning False at teardown) is a diagnostic:
it only means something once the kernel has finished, so the pool reports it
and leaves the decision to the caller.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List

from .errors import ProtocolViolation


@dataclass(frozen=True)
class QuditInfo:
    """
    Value type naming one qudit to the execution manager.

    Attributes
    ----------
    levels : int
        Number of basis states of the qudit (2 for a qubit).
    id : int
        Pool-assigned identifier, unique among currently live qudits.

    Two instances are equal iff both fields match.
    """
    levels: int
    id: int

    def __post_init__(self):
        if self.levels < 2:
            raise ValueError(f"A qudit needs at least 2 levels, got {self.levels}")
        if self.id < 0:
            raise ValueError(f"Qudit ids are non-negative, got {self.id}")


class QuditIdPool:
    """
    Allocator for qudit identifiers with FIFO recycling and leak tracking.

    Examples
    --------
    >>> pool = QuditIdPool()
    >>> a, b = pool.allocate(), pool.allocate()
    >>> pool.free(a)
    >>> pool.allocate() == a
    True
    """

    def __init__(self):
        self._free: Deque[int] = deque()
        self._high_water = 0
        self._live: Dict[int, int] = {}  # id -> levels

    def allocate(self, levels: int = 2) -> int:
        """Return a recycled id if one is available, else a brand new one."""
        if levels < 2:
            raise ValueError(f"A qudit needs at least 2 levels, got {levels}")
        if self._free:
            idx = self._free.popleft()
        else:
            idx = self._high_water
            self._high_water += 1
        self._live[idx] = levels
        return idx

    def free(self, idx: int) -> None:
        """Return ``idx`` to the pool; it must currently be live."""
        if idx not in self._live:
            if 0 <= idx < self._high_water:
                raise ProtocolViolation(f"Qudit id {idx} was already returned to the pool.")
            raise ProtocolViolation(f"Qudit id {idx} was never allocated.")
        del self._live[idx]
        self._free.append(idx)

    def is_live(self, idx: int) -> bool:
        return idx in self._live

    def levels_of(self, idx: int) -> int:
        """Dimensionality recorded for a live id."""
        try:
            return self._live[idx]
        except KeyError:
            raise ProtocolViolation(f"Qudit id {idx} is not live.") from None

    def live_ids(self) -> List[int]:
        """Currently live ids, in ascending order."""
        return sorted(self._live)

    @property
    def num_live(self) -> int:
        return len(self._live)

    @property
    def high_water_mark(self) -> int:
        """Number of distinct ids ever handed out."""
        return self._high_water

    def all_free(self) -> bool:
        """True iff every id ever allocated has been freed again."""
        return not self._live
