from typing import TYPE_CHECKING

import anyio
import sniffio
from anyio import to_thread

from viewgraph.config import Config
from viewgraph.serialization import ZstdJsonCodec

from .workflow import run_job

try:
    from celery import Celery, chain, group
    from celery.result import AsyncResult
except ImportError:  # pragma: no cover
    raise RuntimeError("Celery is required to use the CeleryBackend.") from None

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from celery import Signature, Task

    from viewgraph.serialization import Codec

    from .base import WorkFn
    from .workflow import Job

TASK_NAME = "viewgraph.run_job"

# celery state -> workflow status
STATES = {
    "PENDING": "scheduled",
    "RECEIVED": "ready",
    "STARTED": "executing",
    "RETRY": "executing",
    "SUCCESS": "completed",
}


def layers(jobs: "Sequence[Job]") -> list[list["Job"]]:
    """Split a batch into consecutive layers of jobs sharing the same dependencies."""
    grouped: list[list["Job"]] = []
    for job in jobs:
        if grouped and grouped[-1][0].depends_on == job.depends_on:
            grouped[-1].append(job)
        else:
            grouped.append([job])

    return grouped


class CeleryBackend:
    """
    A WorkflowBackend running jobs as Celery tasks. A batch becomes a chain of groups,
    one group per stage, so Celery only starts a stage once the previous one succeeded.
    Workers must register the job task with `register_worker`, and the app needs a
    result backend (and `task_track_started` to report executing jobs).

    Jobs are routed to their own queue, `Config.default_queue` (`"default"`) unless
    overridden, while a stock Celery worker only consumes the `celery` queue. Start
    workers with `-Q default` (plus any other queue used), or set
    `task_default_queue` on the app to the same name.

    ```python
    celery_app = Celery(broker="redis://localhost:6379/0", backend="redis://...")
    celery_app.conf.task_default_queue = "default"
    engine = WorkflowEngine(storage, CeleryBackend(celery_app))

    # on the worker, e.g. `celery -A app worker -Q default`
    register_worker(celery_app, Deriver(registry, storage))
    ```
    """

    def __init__(self, app: "Celery") -> None:
        self.celery_app = app

    def signature(self, job: "Job") -> "Signature":
        return self.celery_app.signature(
            TASK_NAME,
            args=(job.payload,),
            immutable=True,
            task_id=job.id,
            eta=job.scheduled_at,
            queue=job.queue,
            priority=job.priority,
        )

    def workflow(self, jobs: "Sequence[Job]") -> "Signature":
        return chain(
            *(group([self.signature(job) for job in layer]) for layer in layers(jobs))
        )

    async def submit(self, jobs: "Sequence[Job]") -> None:
        await to_thread.run_sync(self.workflow(jobs).apply_async)

    async def status(self, job_id: str) -> str:
        state: str = await to_thread.run_sync(
            lambda: AsyncResult(job_id, app=self.celery_app).state
        )
        return STATES.get(state, state.lower())


def register_worker(
    app: "Celery",
    work_fn: "WorkFn",
    codec: "Codec | None" = None,
    secret: str | None = None,
) -> "Task":
    """Register the task executing workflow jobs on a Celery worker."""
    if codec is None:
        codec = ZstdJsonCodec(secret or Config().serialization_secret)

    @app.task(name=TASK_NAME, shared=False, ignore_result=False)
    def _run_job(payload: str) -> None:
        try:
            sniffio.current_async_library()
            raise RuntimeError(
                "Workflow jobs cannot run inside an event loop. Await `run_job` instead."
            )
        except sniffio.AsyncLibraryNotFoundError:
            anyio.run(run_job, payload, work_fn, codec)

    return _run_job
