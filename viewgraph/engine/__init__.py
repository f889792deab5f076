from .base import Engine, ExecOptions, Handle, Outcome
from .local import ExecutionStrategy, LocalEngine
from .workflow import Job, WorkflowBackend, WorkflowEngine, run_job, scheduled_time

__all__ = [
    "Engine",
    "ExecOptions",
    "ExecutionStrategy",
    "Handle",
    "Job",
    "LocalEngine",
    "Outcome",
    "WorkflowBackend",
    "WorkflowEngine",
    "run_job",
    "scheduled_time",
]
