import warnings
from types import MappingProxyType
from typing import TYPE_CHECKING

from .exceptions import UnregisteredProjectionError
from .projection import Projection, ProjectionRunner

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping


class Registry:
    """
    The set of projections an application knows about, and the functions deriving them.

    Projections declared with `materialized=False` and no derivation function are
    sources: their output is served by the storage as-is and never derived. A
    materialized projection must have a derivation function to be planned.
    """

    def __init__(self) -> None:
        self._projections: dict[str, Projection] = {}
        self._runners: dict[str, ProjectionRunner] = {}

    @classmethod
    def from_projections(cls, *items: Projection | ProjectionRunner) -> "Registry":
        registry = cls()
        for item in items:
            registry.register(item)

        return registry

    def register(self, item: Projection | ProjectionRunner) -> ProjectionRunner | Projection:
        projection = item.projection if isinstance(item, ProjectionRunner) else item

        if projection.name in self._projections:
            warnings.warn(
                f"Projection '{projection.name}' is already registered. This will"
                " override that implementation.",
                stacklevel=2,
            )

        self._projections[projection.name] = projection
        if isinstance(item, ProjectionRunner):
            self._runners[projection.name] = item
        else:
            self._runners.pop(projection.name, None)

        return item

    def list(self, application: str | None = None) -> set[Projection]:
        return {
            projection
            for projection in self._projections.values()
            if application is None or projection.application == application
        }

    def get(self, name: str) -> Projection:
        if projection := self._projections.get(name):
            return projection

        raise UnregisteredProjectionError(name)

    def runner(self, name: str) -> ProjectionRunner | None:
        return self._runners.get(name)

    def dependency_map(
        self, application: str | None = None
    ) -> "Mapping[str, tuple[str, ...]]":
        return MappingProxyType(
            {
                projection.name: projection.inputs
                for projection in sorted(self.list(application), key=lambda p: p.name)
            }
        )

    def __contains__(self, name: object) -> bool:
        return name in self._projections

    def __len__(self) -> int:
        return len(self._projections)
