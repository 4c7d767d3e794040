"""Plan execution: reference resolution, task operations and the orchestrator."""

from .execution_state import ExecutionState, StepReference, parse_reference, resolve_params
from .orchestrator import Orchestrator
from .task_library import TaskLibrary

__all__ = [
    'ExecutionState',
    'Orchestrator',
    'StepReference',
    'TaskLibrary',
    'parse_reference',
    'resolve_params',
]
