from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from anyio.lowlevel import checkpoint

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Iterable, Iterator, Mapping, Sequence
    from contextlib import AbstractAsyncContextManager

    from .projection import Projection
    from .scope import Row, Scope


class Rows:
    """
    A single-pass stream over the scoped output of a projection. Once consumed it
    cannot be restarted; ask the storage for a fresh `output` instead.
    """

    def __init__(self, name: str, rows: "Iterable[Row]") -> None:
        self.name = name
        self._rows: "Iterator[Row]" = iter(rows)

    def __aiter__(self) -> "Rows":
        return self

    async def __anext__(self) -> "Row":
        await checkpoint()

        try:
            return next(self._rows)
        except StopIteration:
            raise StopAsyncIteration from None

    async def first(self) -> "Row":
        return await anext(self)

    async def collect(self) -> list["Row"]:
        return [row async for row in self]

    def __repr__(self) -> str:
        return f"Rows({self.name!r})"


class UnitOfWork(ABC):
    """Writes made by a single derivation of a single projection."""

    @abstractmethod
    async def materialize(self, rows: "Iterable[Row]") -> int:
        """Persist rows into the projection's output. Returns the number written."""
        raise NotImplementedError()

    @abstractmethod
    async def dematerialize(self, scope: "Scope") -> None:
        """Clear the projection's persisted output within the given scope."""
        raise NotImplementedError()


class Storage(ABC):
    @abstractmethod
    def fields(self, name: str) -> list[str]:
        """The field names of a projection's output."""
        raise NotImplementedError()

    @abstractmethod
    def output(self, name: str, scope: "Scope") -> Rows:
        """Stream the projection's output, restricted to the given scope."""
        raise NotImplementedError()

    @abstractmethod
    def transaction(self, name: str) -> "AbstractAsyncContextManager[UnitOfWork]":
        """
        Open a unit of work for one derivation of the projection. Its effects are
        applied if the block exits cleanly and discarded otherwise.
        """
        raise NotImplementedError()


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "MemoryStore", name: str) -> None:
        self.store = store
        self.name = name
        self._cleared: list["Scope"] = []
        self._written: list["Row"] = []

    async def materialize(self, rows: "Iterable[Row]") -> int:
        fields = self.store.fields(self.name)
        before = len(self._written)

        for row in rows:
            self._written.append(
                {k: v for k, v in row.items() if k in fields} if fields else dict(row)
            )

        return len(self._written) - before

    async def dematerialize(self, scope: "Scope") -> None:
        self._cleared.append(scope)

    def commit(self) -> None:
        if not (self._cleared or self._written):
            return

        table = self.store.tables[self.name]
        fields = self.store.fields(self.name) or None

        for scope in self._cleared:
            table[:] = [row for row in table if not scope.matches(row, fields)]

        table.extend(self._written)


class MemoryStore(Storage):
    """
    Keeps every projection's output as a list of rows in process memory. Useful for
    tests and for virtual projections over data the application already holds.
    """

    def __init__(self, fields: "Mapping[str, Sequence[str]] | None" = None) -> None:
        self.tables: dict[str, list["Row"]] = defaultdict(list)
        self._fields: dict[str, list[str]] = {
            name: list(names) for name, names in (fields or {}).items()
        }

    @classmethod
    def from_projections(cls, projections: "Iterable[Projection]") -> "MemoryStore":
        return cls(
            {projection.name: projection.fields for projection in projections}
        )

    def seed(self, name: str, rows: "Iterable[Row]") -> None:
        self.tables[name].extend(dict(row) for row in rows)

    def fields(self, name: str) -> list[str]:
        return self._fields.get(name, [])

    def output(self, name: str, scope: "Scope") -> Rows:
        # snapshot, so a concurrent commit cannot change a stream mid-read
        snapshot = list(self.tables[name])
        return Rows(name, scope.apply(snapshot, self.fields(name) or None))

    @asynccontextmanager
    async def transaction(self, name: str) -> "AsyncIterator[MemoryUnitOfWork]":
        unit_of_work = MemoryUnitOfWork(self, name)
        yield unit_of_work
        unit_of_work.commit()
