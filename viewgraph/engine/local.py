import logging
from enum import Enum
from typing import TYPE_CHECKING

import anyio

from viewgraph.exceptions import ExecutionError, ExecutionTimeoutError

from .base import Engine, ExecOptions, Handle, Outcome

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence
    from uuid import UUID

    from anyio.abc import TaskGroup

    from viewgraph.exceptions import ViewgraphError
    from viewgraph.execution_plan import ExecutionPlan
    from viewgraph.scope import Scope
    from viewgraph.storage import Rows, Storage

    from .base import WorkFn

logger = logging.getLogger(__name__)


class ExecutionStrategy(Enum):
    CONCURRENT = "concurrent"
    """ One task per projection within a stage."""

    SEQUENTIAL = "sequential"
    """ Projections run one after another, in stage order, in the calling task."""


class _Execution:
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self.done = anyio.Event()
        self.error: "ViewgraphError | None" = None
        self._cancel_scope: anyio.CancelScope | None = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    async def run(
        self,
        stages: "Sequence[Sequence[str]]",
        work_fn: "WorkFn",
        scope: "Scope",
        strategy: ExecutionStrategy,
        target: str,
    ) -> None:
        try:
            with anyio.move_on_after(self.timeout) as self._cancel_scope:
                if self._cancelled:
                    self._cancel_scope.cancel()

                for idx, stage in enumerate(stages):
                    logger.debug("Running stage %d of '%s': %s", idx, target, stage)
                    await _run_stage(stage, work_fn, scope, strategy)

            if self._cancel_scope.cancelled_caught:
                self.error = ExecutionTimeoutError(target, self.timeout)
        except ExecutionError as e:
            logger.debug("Aborting '%s': %s", target, e)
            self.error = e
        finally:
            self.done.set()


async def _derive(work_fn: "WorkFn", name: str, scope: "Scope") -> None:
    try:
        await work_fn(name, scope)
    except Exception as e:
        raise ExecutionError(name, str(e) or type(e).__name__) from e


async def _run_stage(
    stage: "Sequence[str]",
    work_fn: "WorkFn",
    scope: "Scope",
    strategy: ExecutionStrategy,
) -> None:
    if strategy is ExecutionStrategy.SEQUENTIAL:
        for name in stage:
            await _derive(work_fn, name, scope)

        return

    try:
        # the task group is the stage barrier, and cancels siblings on first failure
        async with anyio.create_task_group() as tg:
            for name in stage:
                tg.start_soon(_derive, work_fn, name, scope, name=name)
    except ExceptionGroup as group:
        failures, _ = group.split(ExecutionError)
        if failures is None:
            raise

        # keep the cause chained by `_derive`, hide the group it was collected in
        exc = _first_leaf(failures)
        exc.__suppress_context__ = True
        raise exc


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]

    return exc


class LocalEngine(Engine):
    """
    An Engine for running projections in the current process. Every stage is run to
    completion before the next one starts.

    Optionally accepts a task group into which executions will be started, in which
    case `exec` returns immediately. If one is not provided, `exec` runs the whole plan
    before returning and `fetch` only collects the result.
    """

    name = "local"

    def __init__(
        self,
        storage: "Storage",
        strategy: ExecutionStrategy = ExecutionStrategy.CONCURRENT,
        task_group: "TaskGroup | None" = None,
    ) -> None:
        self.storage = storage
        self.strategy = strategy
        self.task_group = task_group
        self._executions: dict["UUID", _Execution] = {}

    async def exec(
        self,
        plan: "ExecutionPlan",
        work_fn: "WorkFn",
        scope: "Scope",
        options: ExecOptions | None = None,
    ) -> Handle:
        options = options or ExecOptions()
        stages = [(plan.target,)] if options.skip_dependencies else plan.stages

        handle = Handle(
            engine=self.name, target=plan.target, scope=scope, timeout=options.timeout
        )
        execution = _Execution(options.timeout)
        self._executions[handle.id] = execution

        if self.task_group is None:
            await execution.run(stages, work_fn, scope, self.strategy, plan.target)
        else:
            self.task_group.start_soon(
                execution.run,
                stages,
                work_fn,
                scope,
                self.strategy,
                plan.target,
                name=f"{plan.uuid}:{plan.target}",
            )

        return handle

    async def fetch(self, handle: Handle) -> "Outcome[Rows]":
        self._check_handle(handle, self._executions)
        execution = self._executions.pop(handle.id)

        with anyio.move_on_after(handle.timeout) as waiting:
            await execution.done.wait()

        if waiting.cancelled_caught:
            execution.cancel()
            return Outcome(error=ExecutionTimeoutError(handle.target, handle.timeout))
        elif execution.error is not None:
            return Outcome(error=execution.error)

        return Outcome(value=self.storage.output(handle.target, handle.scope))
