"""
Shared fixtures for the runtime tests.

The runtime keeps a few pieces of process-wide state (custom-operation
registry, manager override, per-thread managers, boolean-conversion hook,
active configuration). Every test starts and ends with all of them reset.
"""

import pytest

from qpu_runtime import (
    CustomOpRegistry,
    RuntimeConfig,
    StateVectorManager,
    TracerManager,
    clear_execution_manager_override,
    reset_bool_conversion_hook,
    reset_thread_execution_manager,
    set_runtime_config,
)


@pytest.fixture(autouse=True)
def isolated_runtime():
    config = RuntimeConfig(backend="", seed=1234, library_mode=True,
                           max_qudits=12, warn_on_leak=True)
    set_runtime_config(config)
    CustomOpRegistry.get_instance().clear()
    clear_execution_manager_override()
    reset_thread_execution_manager()
    reset_bool_conversion_hook()
    yield config
    CustomOpRegistry.get_instance().clear()
    clear_execution_manager_override()
    reset_thread_execution_manager()
    reset_bool_conversion_hook()
    set_runtime_config(None)


@pytest.fixture
def tracer():
    """Tracing manager; records what reaches the backend."""
    return TracerManager()


@pytest.fixture
def simulator():
    """Seeded state-vector manager."""
    return StateVectorManager()
