import anyio
import pytest

from viewgraph import Deriver, LocalEngine, Orchestrator, WorkflowEngine
from viewgraph.engine import ExecutionStrategy, run_job
from viewgraph.serialization import ZstdJsonCodec


class InProcessBackend:
    """A workflow backend running every submitted job right away, in batch order."""

    def __init__(self, work_fn, codec):
        self.work_fn = work_fn
        self.codec = codec
        self.statuses: dict[str, str] = {}

    async def submit(self, jobs):
        for job in jobs:
            if any(self.statuses.get(dep) != "completed" for dep in job.depends_on):
                self.statuses[job.id] = "upstream_failed"
                continue

            try:
                await run_job(job.payload, self.work_fn, self.codec)
            except Exception:
                self.statuses[job.id] = "failed"
            else:
                self.statuses[job.id] = "completed"

    async def status(self, job_id):
        return self.statuses.get(job_id, "scheduled")


@pytest.fixture(autouse=True)
async def wrap_timeout():
    with anyio.fail_after(10):
        yield


@pytest.fixture(params=["concurrent", "sequential", "workflow"])
async def orchestrator(request, registry, store):
    if request.param == "workflow":
        codec = ZstdJsonCodec("integration")
        backend = InProcessBackend(Deriver(registry, store), codec)

        yield Orchestrator(registry, store, WorkflowEngine(store, backend, codec=codec))
    else:
        async with anyio.create_task_group() as tg:
            engine = LocalEngine(
                store, strategy=ExecutionStrategy(request.param), task_group=tg
            )
            yield Orchestrator(registry, store, engine)
