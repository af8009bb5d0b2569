"""
Runtime Error Taxonomy
======================

Exceptions raised by the execution-manager layer.

There are three failure families, and none of them is retried:

**ProtocolViolation**
    The caller broke an invariant of the contract: an unbalanced adjoint or
    control region, a double return of a qudit id, binding a second execution
    context, popping a control frame of the wrong size. These are programming
    errors in the code generator (or in hand-written kernels) and are expected
    to abort the run.

**UnknownOperation**
    An instruction named an operation that is neither a built-in gate nor a
    registered custom operation. There is no fallback.

**ResourceExhaustion**
    A backend cannot hold the requested state (e.g. a state vector that would
    exceed the configured capacity). Propagated unchanged.

Invalid argument *values* (wrong parameter count, non-square matrices, a
buffer of the wrong length) raise plain ``ValueError``.
"""


class QPURuntimeError(Exception):
    """Base class for all errors raised by qpu_runtime."""


class ProtocolViolation(QPURuntimeError, RuntimeError):
    """The caller violated an invariant of the execution-manager contract."""


class UnknownOperation(QPURuntimeError, KeyError):
    """An instruction names an operation that cannot be resolved."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return (
            f"Unknown operation '{self.name}': not a built-in gate and not "
            f"found in the custom operation registry."
        )


class ResourceExhaustion(QPURuntimeError, MemoryError):
    """A backend ran out of capacity for the requested state."""
