import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

from anyio import sleep

from viewgraph.config import Config
from viewgraph.exceptions import BackendStatusError, ExecutionTimeoutError
from viewgraph.serialization import ZstdJsonCodec

from .base import Engine, ExecOptions, Handle, Outcome

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping, Sequence
    from typing import Any
    from uuid import UUID

    from viewgraph.execution_plan import ExecutionPlan
    from viewgraph.scope import Scope
    from viewgraph.serialization import Codec
    from viewgraph.storage import Rows, Storage

    from .base import WorkFn

logger = logging.getLogger(__name__)

COMPLETED = "completed"
PENDING = frozenset({"ready", "scheduled", "executing"})


@dataclass(frozen=True, slots=True)
class Job:
    id: str
    payload: str
    scheduled_at: datetime
    priority: int | None = None
    queue: str = "default"
    depends_on: tuple[str, ...] = field(default=())


class WorkflowBackend(Protocol):
    """An external job system able to run a dependency graph of jobs."""

    async def submit(self, jobs: "Sequence[Job]") -> None:
        """
        Submit a whole batch at once. Jobs are given in dependency order, and a job may
        only start once every job in its `depends_on` has completed.
        """
        ...

    async def status(self, job_id: str) -> str:
        """
        Report a job's state: one of `ready`, `scheduled`, `executing`, `completed`, or
        any other backend-specific terminal state.
        """
        ...


def scheduled_time(options: ExecOptions) -> datetime:
    """
    When a submitted workflow should run. Defaults to the next UTC midnight after the
    `relative_to` reference (now, unless given). `immediately` runs at the reference
    itself, and an explicit `scheduled_at` always wins.
    """
    if options.scheduled_at is not None:
        return options.scheduled_at

    relative_to = options.relative_to or datetime.now(UTC)
    if relative_to.tzinfo is None:
        relative_to = relative_to.replace(tzinfo=UTC)

    if options.immediately:
        return relative_to

    next_day = relative_to.astimezone(UTC).date() + timedelta(days=1)
    return datetime.combine(next_day, time.min, tzinfo=UTC)


async def run_job(payload: str, work_fn: "WorkFn", codec: "Codec") -> None:
    """Execute one job of a workflow: decode its payload and derive the projection."""
    name, scope = codec.decode(payload)
    logger.debug("Running workflow job for '%s'", name)
    await work_fn(name, scope)


class WorkflowEngine(Engine):
    """
    An Engine submitting the whole plan to a workflow backend as a batch of jobs, where
    each job of a stage depends on every job of the stage before it. The backend runs
    the jobs with `run_job`; `fetch` polls the target's job until it completes.
    """

    name = "workflow"

    def __init__(
        self,
        storage: "Storage",
        backend: WorkflowBackend,
        codec: "Codec | None" = None,
        **settings: "Any",
    ) -> None:
        self.config = Config(**settings)
        self.storage = storage
        self.backend = backend
        self.codec: "Codec" = codec or ZstdJsonCodec(self.config.serialization_secret)
        self._submitted: dict["UUID", "Mapping[str, Any]"] = {}

    def _build_jobs(
        self, stages: "Sequence[Sequence[str]]", scope: "Scope", options: ExecOptions
    ) -> list[Job]:
        scheduled_at = scheduled_time(options)
        queue = options.queue or self.config.default_queue

        jobs: list[Job] = []
        previous: tuple[str, ...] = ()
        for stage in stages:
            current = [
                Job(
                    id=str(uuid4()),
                    payload=self.codec.encode(name, scope),
                    scheduled_at=scheduled_at,
                    priority=options.priority,
                    queue=queue,
                    depends_on=previous,
                )
                for name in stage
            ]
            jobs.extend(current)
            previous = tuple(job.id for job in current)

        return jobs

    async def exec(
        self,
        plan: "ExecutionPlan",
        work_fn: "WorkFn",
        scope: "Scope",
        options: ExecOptions | None = None,
    ) -> Handle:
        # work_fn runs inside the backend's workers, see `run_job`
        options = options or ExecOptions()
        stages = [(plan.target,)] if options.skip_dependencies else plan.stages

        jobs = self._build_jobs(stages, scope, options)
        await self.backend.submit(jobs)

        handle = Handle(
            engine=self.name,
            target=plan.target,
            scope=scope,
            timeout=options.timeout,
            meta={"batch_id": str(plan.uuid), "job_id": jobs[-1].id},
        )
        self._submitted[handle.id] = handle.meta
        logger.debug(
            "Submitted %d jobs for '%s' in batch %s", len(jobs), plan.target, plan.uuid
        )

        return handle

    async def fetch(self, handle: Handle) -> "Outcome[Rows]":
        self._check_handle(handle, self._submitted)
        job_id: str = handle.meta["job_id"]
        waited = 0.0

        for retry in range(self.config.poll_max_retries + 1):
            status = await self.backend.status(job_id)
            logger.debug("Job %s of '%s' is %s", job_id, handle.target, status)

            if status == COMPLETED:
                self._submitted.pop(handle.id, None)
                return Outcome(value=self.storage.output(handle.target, handle.scope))
            elif status not in PENDING:
                self._submitted.pop(handle.id, None)
                return Outcome(error=BackendStatusError(status))
            elif retry < self.config.poll_max_retries:
                delay = self.config.poll_backoff_unit * (retry * 2)
                waited += delay
                await sleep(delay)

        return Outcome(error=ExecutionTimeoutError(handle.target, waited))
