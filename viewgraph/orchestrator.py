import logging
import warnings
from typing import TYPE_CHECKING

from .config import Config
from .derivation import Deriver
from .engine import Engine, ExecOptions, ExecutionStrategy, LocalEngine, Outcome
from .exceptions import (
    ConfigurationError,
    MissingDerivationError,
    UnregisteredProjectionError,
)
from .rank import rank
from .scope import Scope

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Mapping
    from typing import Any

    from .engine import Handle
    from .engine.base import WorkFn
    from .execution_plan import ExecutionPlan
    from .registry import Registry
    from .scope import Filter, Row
    from .storage import Storage

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Projects a target: ranks everything it depends on, runs the resulting plan on an
    engine, and returns the target's rows under the given scope.

    ```python
    orchestrator = Orchestrator(registry, MemoryStore.from_projections(registry.list()))
    outcome = await orchestrator.project("daily_totals", {"day": "2024-01-01"})
    rows = outcome.unwrap()
    ```
    """

    def __init__(
        self,
        registry: "Registry",
        storage: "Storage",
        engine: Engine | None = None,
        *,
        work_fn: "WorkFn | None" = None,
        strategy: ExecutionStrategy = ExecutionStrategy.CONCURRENT,
        **settings: "Any",
    ) -> None:
        if engine is not None and not isinstance(engine, Engine):
            raise ConfigurationError(
                f"Engine `{engine!r}` does not implement the `Engine` interface."
            )

        self.config = Config(**settings)
        self.registry = registry
        self.storage = storage
        self.engine: Engine = engine or LocalEngine(storage, strategy=strategy)
        self.work_fn: "WorkFn" = work_fn or Deriver(registry, storage)

    def plan(self, target: str, application: str | None = None) -> "ExecutionPlan":
        """
        Rank everything `target` needs, making sure all of it is registered and that
        every materialized projection in the plan can be derived.
        """
        dependency_map = self.registry.dependency_map(application)
        if target not in dependency_map:
            raise UnregisteredProjectionError(target)

        plan = rank(dependency_map, target)
        for name in plan.projections:
            if name not in dependency_map:
                raise UnregisteredProjectionError(name)

        for name in plan.projections:
            projection = self.registry.get(name)
            if projection.materialized and self.registry.runner(name) is None:
                raise MissingDerivationError(name)

        return plan

    def _options(self, options: "Mapping[str, Any]") -> ExecOptions:
        defaults = {
            "timeout": self.config.timeout,
            "queue": self.config.default_queue,
            "allow_empty_filters": self.config.allow_empty_filters,
        }
        return ExecOptions.model_validate({**defaults, **options})

    async def project(
        self,
        target: str,
        scope: "Scope | Mapping[str, Any] | Iterable[Filter] | None" = None,
        **options: "Any",
    ) -> "Outcome[list[Row] | Handle]":
        """
        Project `target` under `scope`.

        By default the plan is executed and awaited, and the outcome holds the target's
        rows. With `async=True` the outcome holds the execution's handle instead, to be
        given to `fetch` later.

        Problems with the request (unknown projections, cycles, unusable engine
        options) are raised before anything runs. Failures of the run itself are
        returned as the outcome's error.
        """
        scope = Scope.build(scope)
        exec_options = self._options(options)

        if scope.empty and not exec_options.allow_empty_filters:
            warnings.warn(
                f"Projecting '{target}' with an empty scope. Every projection it depends"
                " on will be derived without any filters applied. Pass"
                " `allow_empty_filters=True` to allow this.",
                stacklevel=2,
            )

        plan = self.plan(target, exec_options.application)
        handle = await self.engine.exec(plan, self.work_fn, scope, exec_options)
        logger.debug("Started '%s' on the %s engine", target, self.engine.name)

        if exec_options.run_async:
            return Outcome(value=handle)

        return await self.fetch(handle)

    async def fetch(self, handle: "Handle") -> "Outcome[list[Row]]":
        outcome = await self.engine.fetch(handle)
        if not outcome.ok:
            return outcome

        return Outcome(value=await outcome.value.collect())
