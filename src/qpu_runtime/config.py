"""
Runtime Configuration
=====================

Process-level settings for the execution-manager runtime.

Settings are read from the environment once, the first time they are needed,
and cached. Tests (or embedding applications) can swap the active
configuration with ``set_runtime_config()``.

ENVIRONMENT VARIABLES
---------------------

=============================  =========  ====================================
Variable                       Default    Meaning
=============================  =========  ====================================
``QPU_RUNTIME_BACKEND``        ``""``     Name of the backend used for
                                          per-thread managers. Empty means
                                          "the most recently registered one".
``QPU_RUNTIME_SEED``           ``""``     Seed for the reference simulator's
                                          random number generator.
``QPU_RUNTIME_LIBRARY_MODE``   ``1``      ``1``: measurements return deferred
                                          ``MeasureResult`` values. ``0``:
                                          plain booleans (ahead-of-time mode).
``QPU_RUNTIME_MAX_QUDITS``     ``24``     Capacity of the state-vector
                                          backend, in qubit equivalents.
``QPU_RUNTIME_WARN_ON_LEAK``   ``1``      Emit a ``ResourceWarning`` when a
                                          manager is closed with live qudits.
=============================  =========  ====================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional


_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


def _env_seed() -> Optional[int]:
    raw = os.getenv("QPU_RUNTIME_SEED", "").strip()
    return int(raw) if raw else None


@dataclass
class RuntimeConfig:
    """
    Settings shared by every manager in the process.

    Attributes
    ----------
    backend : str
        Registered backend name used to build per-thread managers.
        Empty string selects the most recently registered backend.
    seed : int, optional
        Seed for the reference simulator. None draws fresh entropy.
    library_mode : bool
        Whether kernel helpers wrap measurement outcomes in
        ``MeasureResult`` (True) or return plain booleans (False).
    max_qudits : int
        State-vector capacity, expressed as a number of qubits; the
        simulator refuses states with more than ``2**max_qudits`` amplitudes.
    warn_on_leak : bool
        Emit a ``ResourceWarning`` when a manager is closed while qudits
        are still live.

    Example
    -------
    >>> config = RuntimeConfig(backend="tracer", seed=7)
    >>> set_runtime_config(config)
    """
    backend: str = field(default_factory=lambda: os.getenv("QPU_RUNTIME_BACKEND", "").strip())
    seed: Optional[int] = field(default_factory=_env_seed)
    library_mode: bool = field(default_factory=lambda: _env_flag("QPU_RUNTIME_LIBRARY_MODE", "1"))
    max_qudits: int = field(default_factory=lambda: int(os.getenv("QPU_RUNTIME_MAX_QUDITS", "24")))
    warn_on_leak: bool = field(default_factory=lambda: _env_flag("QPU_RUNTIME_WARN_ON_LEAK", "1"))

    def __post_init__(self):
        if self.max_qudits < 1:
            raise ValueError(f"max_qudits must be positive, got {self.max_qudits}")

    @property
    def max_state_dimension(self) -> int:
        """Largest number of amplitudes a state-vector backend may hold."""
        return 2 ** self.max_qudits


_active_config: Optional[RuntimeConfig] = None


def load_runtime_config() -> RuntimeConfig:
    """Build a fresh configuration from the current environment."""
    return RuntimeConfig()


def get_runtime_config() -> RuntimeConfig:
    """Return the active configuration, reading the environment on first use."""
    global _active_config
    if _active_config is None:
        _active_config = load_runtime_config()
    return _active_config


def set_runtime_config(config: Optional[RuntimeConfig]) -> None:
    """
    Replace the active configuration.

    Passing None discards the cached configuration so that the next call to
    ``get_runtime_config()`` re-reads the environment.
    """
    global _active_config
    _active_config = config
