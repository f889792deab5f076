from collections.abc import Callable, Iterable, Mapping
from functools import reduce
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator, Sequence

Row = Mapping[str, Any]
Filter = tuple[str, Any]
Reducer = Callable[[Filter, Any], Any]


class Scope(BaseModel):
    """
    An immutable filter over projection outputs, threaded unchanged through every
    derivation of a single projection run.

    Filters are ordered `(key, value)` pairs. Without a reducer, a row is in scope when
    it matches every filter whose key is one of the projection's fields. A reducer
    replaces that behaviour entirely: it is folded over the filters, starting from the
    projection's rows, as `reducer(filter, acc)`.
    """

    filters: tuple[Filter, ...] = ()
    reducer: Reducer | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def build(
        cls,
        filters: "Scope | Mapping[str, Any] | Iterable[Filter] | None" = None,
        reducer: Reducer | None = None,
    ) -> "Scope":
        if isinstance(filters, Scope):
            return filters
        elif filters is None:
            filters = ()
        elif isinstance(filters, Mapping):
            filters = filters.items()

        return cls(filters=tuple(tuple(f) for f in filters), reducer=reducer)

    @property
    def empty(self) -> bool:
        return not self.filters

    def applicable_filters(self, fields: "Sequence[str] | None" = None) -> list[Filter]:
        if not fields:
            return list(self.filters)

        return [(key, value) for key, value in self.filters if key in fields]

    def matches(self, row: Row, fields: "Sequence[str] | None" = None) -> bool:
        return all(
            key in row and row[key] == value
            for key, value in self.applicable_filters(fields)
        )

    def apply(
        self, rows: Iterable[Row], fields: "Sequence[str] | None" = None
    ) -> "Iterator[Row]":
        if self.reducer is not None:
            return iter(reduce(lambda acc, f: self.reducer(f, acc), self.filters, rows))

        return (row for row in rows if self.matches(row, fields))
