from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence
    from typing import Any


class ViewgraphError(Exception):
    def __init__(self, *args: "Any", **kwargs: "Any") -> None:
        super().__init__(*args, **kwargs)


##
## CONFIGURATION
##


class ConfigurationError(ViewgraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class UnregisteredProjectionError(ConfigurationError):
    def __init__(self, projection_name: str) -> None:
        self.projection = projection_name
        super().__init__(
            f"Projection '{projection_name}' is not defined in the registry."
            f" Register it with `registry.register(...)`."
        )


class MissingDerivationError(ConfigurationError):
    def __init__(self, projection_name: str) -> None:
        self.projection = projection_name
        super().__init__(
            f"Projection '{projection_name}' is materialized but has no derivation"
            " function. Register it with `@projection` on a function, or declare it"
            " with `materialized=False` to serve it from storage as-is."
        )


class UnserializableScopeError(ConfigurationError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Scope cannot be encoded into a job payload: {reason}.")


##
## RANKING
##


class RankingError(ViewgraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class CycleError(RankingError):
    def __init__(self, cycle: "Sequence[str]") -> None:
        self.cycle = tuple(cycle)
        super().__init__(
            "Projections cannot contain dependency cycles. Offending cycle:\n"
            f"  {' -> '.join(self.cycle)}"
        )


class StageConflictError(RankingError):
    def __init__(self, stage: "Sequence[str]", edge: tuple[str, str]) -> None:
        self.stage = tuple(stage)
        self.edge = edge
        super().__init__(
            f"Stage {list(self.stage)} cannot run concurrently: '{edge[1]}'"
            f" depends on '{edge[0]}'."
        )


##
## EXECUTION
##


class ExecutionError(ViewgraphError):
    def __init__(self, projection_name: str, reason: str | None = None) -> None:
        self.projection = projection_name
        message = f"Projection '{projection_name}' failed to derive."
        if reason:
            message = f"{message} {reason}"

        super().__init__(message)


class ExecutionTimeoutError(ViewgraphError, TimeoutError):
    def __init__(self, target: str, timeout: float) -> None:
        self.target = target
        self.timeout = timeout
        super().__init__(
            f"Projection '{target}' failed to complete before max timeout"
            f" reached ({timeout}s)."
        )


class BackendStatusError(ViewgraphError):
    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"The workflow failed with status: '{status}'.")


class HandleNotFoundError(ViewgraphError):
    def __init__(self, handle_id: "Any", engine: str) -> None:
        super().__init__(
            f"Handle '{handle_id}' was not executed by, or was already fetched"
            f" from, the '{engine}' engine."
        )


##
## PAYLOADS
##


class PayloadError(ViewgraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class TamperedDataError(PayloadError):
    def __init__(self) -> None:
        super().__init__("Deserialization failed due to signature mismatch.")


class UnsupportedPayloadVersionError(PayloadError):
    def __init__(self, version: "Any") -> None:
        super().__init__(f"Job payload version '{version}' is not supported.")
