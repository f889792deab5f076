import inspect
import warnings
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
    from typing import Any

    from .scope import Row, Scope
    from .storage import Rows

    DerivationFn = Callable[..., AsyncIterator[Row] | Awaitable[Iterable[Row] | None]]


class Projection(BaseModel):
    name: str
    inputs: tuple[str, ...] = ()
    fields: tuple[str, ...] = ()
    materialized: bool = True
    dematerialize: bool = True
    application: str | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    def __call__(self, fn: "DerivationFn") -> "ProjectionRunner":
        return ProjectionRunner(projection=self, fn=fn)


@lru_cache
def _get_available_parameters(fn) -> dict[str, dict[str, "Any"]]:
    init_signature = inspect.signature(fn)
    parameters = init_signature.parameters.values()
    return {
        param.name: {
            "annotation": param.annotation,
            "optional": param.default is not inspect.Parameter.empty,
        }
        for param in parameters
        if param.name != "self"
    }


@dataclass
class ProjectionRunner:
    """
    Binds a Projection to the function deriving its rows.

    The function's parameters are resolved by name: a parameter named after one of the
    projection's inputs receives that input's scoped `Rows`, and a parameter named
    `scope` receives the `Scope` of the run. Anything else must have a default.

    The function either yields rows or returns an iterable of rows (or `None` for
    projections that only cause side effects).
    """

    projection: Projection
    fn: "DerivationFn"

    def __post_init__(self) -> None:
        self.__name__ = self.projection.name

        parameters = _get_available_parameters(self.fn)
        resolvable = {*self.projection.inputs, "scope"}
        optional: set[str] = {
            name for name, param in parameters.items() if param["optional"]
        }

        if missing_args := parameters.keys() - resolvable - optional:
            raise ValueError(
                f"Projection {self.projection.name} has unresolvable parameters:"
                f" {missing_args}"
            )

    @property
    def name(self) -> str:
        return self.projection.name

    def _prepare_arguments(
        self, scope: "Scope", inputs: "dict[str, Rows]"
    ) -> dict[str, "Any"]:
        parameters = _get_available_parameters(self.fn)
        arguments: dict[str, "Any"] = {
            name: rows for name, rows in inputs.items() if name in parameters
        }
        if "scope" in parameters:
            arguments["scope"] = scope

        return arguments

    async def run(
        self, scope: "Scope", inputs: "dict[str, Rows]"
    ) -> "AsyncIterator[Row]":
        resolved = self.fn(**self._prepare_arguments(scope, inputs))

        produced = 0
        if hasattr(resolved, "__aiter__"):
            async for row in resolved:
                produced += 1
                yield row
        else:
            for row in await resolved or ():
                produced += 1
                yield row

        if produced == 0 and self.projection.materialized:
            warnings.warn(
                f"Projection '{self.projection.name}' derived no rows.", stacklevel=2
            )
