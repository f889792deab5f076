from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Generic, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat

from viewgraph.exceptions import HandleNotFoundError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Awaitable, Callable, Mapping
    from typing import Any, ClassVar

    from viewgraph.exceptions import ViewgraphError
    from viewgraph.execution_plan import ExecutionPlan
    from viewgraph.scope import Scope

    WorkFn = Callable[[str, Scope], Awaitable[None]]

T = TypeVar("T")


class ExecOptions(BaseModel):
    timeout: PositiveFloat = 60
    skip_dependencies: bool = False

    # only meaningful to workflow backends
    priority: int | None = None
    queue: str | None = None
    scheduled_at: datetime | None = None
    relative_to: datetime | None = None
    immediately: bool = False

    # only meaningful to the orchestrator
    run_async: bool = Field(default=False, alias="async")
    allow_empty_filters: bool = False
    application: str | None = None

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


@dataclass(frozen=True, slots=True)
class Handle:
    """A token for one execution, returned by `Engine.exec` and redeemed by `fetch`."""

    engine: str
    target: str
    scope: "Scope"
    timeout: float
    id: UUID = field(default_factory=uuid4)
    meta: "Mapping[str, Any]" = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    value: "T | None" = None
    error: "ViewgraphError | None" = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error

        return self.value


class Engine(ABC):
    name: "ClassVar[str]"

    @abstractmethod
    async def exec(
        self,
        plan: "ExecutionPlan",
        work_fn: "WorkFn",
        scope: "Scope",
        options: ExecOptions | None = None,
    ) -> Handle:
        """
        Start running a plan. Problems with the request itself are raised; failures
        of the run are reported by `fetch`.
        """
        raise NotImplementedError()

    @abstractmethod
    async def fetch(self, handle: Handle) -> "Outcome[Any]":
        """
        Wait for an execution to finish. On success the value is the target's scoped
        output; timeouts and failures are returned as the outcome's error.
        """
        raise NotImplementedError()

    def _check_handle(self, handle: Handle, known: "Mapping[UUID, Any]") -> None:
        if handle.engine != self.name or handle.id not in known:
            raise HandleNotFoundError(handle.id, self.name)
