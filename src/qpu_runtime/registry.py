"""
Manager Resolution
==================

Kernel code never constructs an execution manager itself; it asks for "the
current one" with ``get_execution_manager()``.

RESOLUTION ORDER
----------------
1. An *override* installed with ``set_execution_manager(em)``. It is
   process-wide and wins on every thread for as long as it is installed.
2. Otherwise the calling thread's own instance. On first use per thread it
   is built by the *default factory* and cached; afterwards the same instance
   is returned (Unresolved → Resolved, one way).

REGISTRATION
------------
A backend module registers its manager class at import time::

    register_execution_manager("state_vector", StateVectorManager)

This does two things:

a. It installs the class as the default factory. Registering a second class
   replaces the factory for threads that resolve *later*; managers already
   built on other threads are unaffected. The ``QPU_RUNTIME_BACKEND``
   setting, when non-empty, picks the default factory by name instead.
b. It publishes a named factory ``get_registered_execution_manager_<name>``
   as an attribute of this module (also available through
   ``get_named_execution_manager_factory(name)``). A named factory returns a
   per-thread instance of that specific backend, bypassing the default.

Only this table and the override are shared between threads. The managers
themselves are thread-confined and never locked.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Type

from .config import get_runtime_config
from .errors import QPURuntimeError
from .manager import ExecutionManager


logger = logging.getLogger(__name__)


FACTORY_PREFIX = "get_registered_execution_manager_"

_lock = threading.RLock()
_manager_types: Dict[str, Type[ExecutionManager]] = {}
_default_name: Optional[str] = None
_override: Optional[ExecutionManager] = None
_thread_state = threading.local()


# =============================================================================
# REGISTRATION
# =============================================================================

def register_execution_manager(name: str, manager_type: Type[ExecutionManager]) -> None:
    """Install ``manager_type`` as the default factory and publish it under ``name``."""
    if not name or not name.isidentifier():
        raise ValueError(f"Backend names must be valid identifiers, got {name!r}")
    if not (isinstance(manager_type, type) and issubclass(manager_type, ExecutionManager)):
        raise TypeError(f"{manager_type!r} is not an ExecutionManager subclass")
    global _default_name
    with _lock:
        previous = _default_name
        _manager_types.pop(name, None)
        _manager_types[name] = manager_type
        _default_name = name
    logger.debug("Registered execution manager %r -> %s (previous default: %r)",
                 name, manager_type.__name__, previous)


def unregister_execution_manager(name: str) -> None:
    """Remove ``name``; the most recently registered remaining backend becomes default."""
    global _default_name
    with _lock:
        if name not in _manager_types:
            raise KeyError(f"No execution manager registered under {name!r}")
        del _manager_types[name]
        if _default_name == name:
            _default_name = next(reversed(_manager_types), None) if _manager_types else None


def registered_execution_managers() -> List[str]:
    with _lock:
        return list(_manager_types)


def _resolve_type(name: str) -> Type[ExecutionManager]:
    with _lock:
        try:
            return _manager_types[name]
        except KeyError:
            raise QPURuntimeError(
                f"No execution manager registered under {name!r}. "
                f"Available: {list(_manager_types)}"
            ) from None


def default_backend_name() -> str:
    """Name the default factory currently resolves to."""
    configured = get_runtime_config().backend
    if configured:
        return configured
    with _lock:
        if _default_name is None:
            raise QPURuntimeError("No execution manager has been registered.")
        return _default_name


# =============================================================================
# PER-THREAD RESOLUTION
# =============================================================================

def get_registered_execution_manager() -> ExecutionManager:
    """The calling thread's default-factory manager, built on first use."""
    em = getattr(_thread_state, "manager", None)
    if em is None:
        name = default_backend_name()
        em = _resolve_type(name)()
        _thread_state.manager = em
        logger.debug("Constructed %s for thread %s",
                     type(em).__name__, threading.current_thread().name)
    return em


def get_execution_manager() -> ExecutionManager:
    """The override if one is installed, otherwise this thread's manager."""
    override = _override
    if override is not None:
        return override
    return get_registered_execution_manager()


def set_execution_manager(em: ExecutionManager) -> None:
    """Install ``em`` as the process-wide override."""
    global _override
    if not isinstance(em, ExecutionManager):
        raise TypeError(f"{em!r} is not an ExecutionManager")
    with _lock:
        _override = em


def clear_execution_manager_override() -> None:
    global _override
    with _lock:
        _override = None


def reset_thread_execution_manager() -> None:
    """Forget the calling thread's cached managers (default and named)."""
    for attr in ("manager", "named"):
        if hasattr(_thread_state, attr):
            delattr(_thread_state, attr)


# =============================================================================
# NAMED FACTORIES
# =============================================================================

def get_named_execution_manager_factory(name: str) -> Callable[[], ExecutionManager]:
    """Factory returning this thread's instance of the backend registered as ``name``."""
    _resolve_type(name)

    def factory() -> ExecutionManager:
        named = getattr(_thread_state, "named", None)
        if named is None:
            named = _thread_state.named = {}
        em = named.get(name)
        if em is None:
            em = named[name] = _resolve_type(name)()
        return em

    factory.__name__ = FACTORY_PREFIX + name
    return factory


def __getattr__(attr: str):
    if attr.startswith(FACTORY_PREFIX):
        name = attr[len(FACTORY_PREFIX):]
        with _lock:
            known = name in _manager_types
        if known:
            return get_named_execution_manager_factory(name)
    raise AttributeError(f"module {__name__!r} has no attribute {attr!r}")
