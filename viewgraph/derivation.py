import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING

from .exceptions import MissingDerivationError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Awaitable, Callable

    from .registry import Registry
    from .scope import Scope
    from .storage import Rows, Storage

    WorkFn = Callable[[str, Scope], Awaitable[None]]

logger = logging.getLogger(__name__)


class Deriver:
    """
    The default work function: derives one projection under a scope.

    Each call owns its own unit of work. The projection's scoped output is cleared
    (unless it opts out of dematerialization), its inputs are streamed into the
    derivation, and the rows it produces are materialized. Nothing is written unless the
    derivation completes. When reads come from a different storage, a read transaction
    is nested inside the write one for the duration of the call.
    """

    def __init__(
        self,
        registry: "Registry",
        storage: "Storage",
        read_storage: "Storage | None" = None,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.read_storage = read_storage or storage

    async def __call__(self, name: str, scope: "Scope") -> None:
        projection = self.registry.get(name)
        runner = self.registry.runner(name)

        if runner is None:
            if projection.materialized:
                raise MissingDerivationError(name)

            return

        async with AsyncExitStack() as stack:
            unit_of_work = await stack.enter_async_context(self.storage.transaction(name))
            if self.read_storage is not self.storage:
                await stack.enter_async_context(self.read_storage.transaction(name))

            inputs: dict[str, "Rows"] = {
                inp: self.read_storage.output(inp, scope) for inp in projection.inputs
            }

            if projection.materialized and projection.dematerialize:
                await unit_of_work.dematerialize(scope)

            rows = [row async for row in runner.run(scope, inputs)]

            if projection.materialized:
                written = await unit_of_work.materialize(rows)
                logger.debug("Materialized %d rows for '%s'", written, name)
