from .derivation import Deriver
from .engine import (
    Engine,
    ExecOptions,
    ExecutionStrategy,
    Handle,
    LocalEngine,
    Outcome,
    WorkflowEngine,
)
from .execution_plan import ExecutionPlan
from .orchestrator import Orchestrator
from .projection import Projection
from .rank import rank
from .registry import Registry
from .scope import Scope
from .storage import MemoryStore, Rows, Storage

__all__ = [
    "Deriver",
    "Engine",
    "ExecOptions",
    "ExecutionPlan",
    "ExecutionStrategy",
    "Handle",
    "LocalEngine",
    "MemoryStore",
    "Orchestrator",
    "Outcome",
    "Projection",
    "Registry",
    "Rows",
    "Scope",
    "Storage",
    "WorkflowEngine",
    "rank",
]
