from datetime import UTC, datetime, timedelta, timezone

import pytest

from viewgraph import ExecOptions, MemoryStore, Scope, WorkflowEngine, rank
from viewgraph.engine import scheduled_time
from viewgraph.exceptions import (
    BackendStatusError,
    ExecutionTimeoutError,
    HandleNotFoundError,
    UnserializableScopeError,
)

DAY_1 = Scope.build({"day": 1})


class FakeBackend:
    def __init__(self, *statuses: str) -> None:
        self.statuses = list(statuses or ["completed"])
        self.batches = []
        self.polled = []

    async def submit(self, jobs):
        self.batches.append(list(jobs))

    async def status(self, job_id):
        self.polled.append(job_id)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)

        return self.statuses[0]


@pytest.fixture
def sleeps(monkeypatch):
    delays = []

    async def _sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("viewgraph.engine.workflow.sleep", _sleep)
    return delays


async def _noop(name, scope): ...


@pytest.mark.anyio
async def test_workflow_engine_jobs(graph, store):
    backend = FakeBackend()
    engine = WorkflowEngine(store, backend)
    plan = rank(graph, "f")

    handle = await engine.exec(plan, _noop, DAY_1, ExecOptions(priority=3))

    [jobs] = backend.batches
    decoded = [engine.codec.decode(job.payload) for job in jobs]
    assert [name for name, _ in decoded] == ["a", "b", "c", "e", "f"]
    assert all(scope == DAY_1 for _, scope in decoded)

    a, b, c, e, f = jobs
    assert a.depends_on == b.depends_on == ()
    assert c.depends_on == e.depends_on == (a.id, b.id)
    assert f.depends_on == (c.id, e.id)
    assert {job.priority for job in jobs} == {3}
    assert {job.queue for job in jobs} == {"default"}

    assert handle.engine == "workflow"
    assert handle.meta == {"batch_id": str(plan.uuid), "job_id": f.id}


@pytest.mark.anyio
async def test_workflow_engine_options(graph, store):
    backend = FakeBackend()
    engine = WorkflowEngine(store, backend, default_queue="projections")
    options = ExecOptions(skip_dependencies=True, immediately=True)

    await engine.exec(rank(graph, "f"), _noop, DAY_1, options)
    await engine.exec(rank(graph, "a"), _noop, DAY_1, ExecOptions(queue="urgent"))

    [[only], [urgent]] = backend.batches
    assert engine.codec.decode(only.payload)[0] == "f"
    assert only.depends_on == ()
    assert only.queue == "projections"
    assert urgent.queue == "urgent"


@pytest.mark.anyio
async def test_workflow_engine_unserializable_scope(graph, store):
    backend = FakeBackend()
    engine = WorkflowEngine(store, backend)
    scope = Scope.build({"day": 1}, reducer=lambda f, rows: rows)

    with pytest.raises(UnserializableScopeError):
        await engine.exec(rank(graph, "f"), _noop, scope)

    assert backend.batches == []


@pytest.mark.anyio
async def test_workflow_engine_fetch(graph, store, sleeps):
    store.seed("f", [{"key": "f", "day": 1}, {"key": "f", "day": 2}])
    backend = FakeBackend("completed")
    engine = WorkflowEngine(store, backend)

    handle = await engine.exec(rank(graph, "f"), _noop, DAY_1)
    outcome = await engine.fetch(handle)

    assert await outcome.unwrap().collect() == [{"key": "f", "day": 1}]
    assert backend.polled == [handle.meta["job_id"]]
    assert sleeps == []

    with pytest.raises(HandleNotFoundError):
        await engine.fetch(handle)


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("statuses", "expected_sleeps"),
    [
        (("ready", "executing", "completed"), [0, 2]),
        (("scheduled", "ready", "executing", "completed"), [0, 2, 4]),
    ],
)
async def test_workflow_engine_backoff(graph, store, sleeps, statuses, expected_sleeps):
    backend = FakeBackend(*statuses)
    engine = WorkflowEngine(store, backend)

    outcome = await engine.fetch(await engine.exec(rank(graph, "f"), _noop, DAY_1))

    assert outcome.ok
    assert sleeps == expected_sleeps
    assert len(backend.polled) == len(statuses)


@pytest.mark.anyio
async def test_workflow_engine_poll_timeout(graph, store, sleeps):
    backend = FakeBackend("executing")
    engine = WorkflowEngine(store, backend)

    handle = await engine.exec(rank(graph, "f"), _noop, DAY_1)
    outcome = await engine.fetch(handle)

    assert isinstance(outcome.error, ExecutionTimeoutError)
    assert outcome.error.timeout == sum(range(0, 20, 2))
    assert len(backend.polled) == 11
    assert sleeps == list(range(0, 20, 2))

    # still pending, so the handle can be fetched again
    backend.statuses = ["completed"]
    assert (await engine.fetch(handle)).ok


@pytest.mark.anyio
async def test_workflow_engine_poll_settings(graph, store, sleeps, monkeypatch):
    monkeypatch.setenv("VIEWGRAPH_POLL_MAX_RETRIES", "2")
    backend = FakeBackend("ready")
    engine = WorkflowEngine(store, backend, poll_backoff_unit=0.5)

    outcome = await engine.fetch(await engine.exec(rank(graph, "a"), _noop, DAY_1))

    assert isinstance(outcome.error, ExecutionTimeoutError)
    assert len(backend.polled) == 3
    assert sleeps == [0, 1.0]


@pytest.mark.anyio
async def test_workflow_engine_failed(graph, store, sleeps):
    backend = FakeBackend("ready", "failed")
    engine = WorkflowEngine(store, backend)

    handle = await engine.exec(rank(graph, "f"), _noop, DAY_1)
    outcome = await engine.fetch(handle)

    assert isinstance(outcome.error, BackendStatusError)
    assert outcome.error.status == "failed"

    with pytest.raises(BackendStatusError, match="'failed'"):
        outcome.unwrap()

    with pytest.raises(HandleNotFoundError):
        await engine.fetch(handle)


def test_scheduled_time_explicit():
    at = datetime(2024, 1, 1, 12, tzinfo=UTC)

    assert scheduled_time(ExecOptions(scheduled_at=at, immediately=True)) == at


def test_scheduled_time_immediately():
    relative_to = datetime(2024, 1, 1, 12, 30, tzinfo=UTC)

    assert (
        scheduled_time(ExecOptions(relative_to=relative_to, immediately=True))
        == relative_to
    )


@pytest.mark.parametrize(
    ("relative_to", "expected"),
    [
        (datetime(2024, 1, 1, 12, 30, tzinfo=UTC), datetime(2024, 1, 2, tzinfo=UTC)),
        (datetime(2024, 1, 31, 23, 59), datetime(2024, 2, 1, tzinfo=UTC)),
        (
            datetime(2024, 1, 1, 20, tzinfo=timezone(timedelta(hours=-5))),
            datetime(2024, 1, 3, tzinfo=UTC),
        ),
    ],
    ids=["aware", "naive", "offset"],
)
def test_scheduled_time_next_midnight(relative_to, expected):
    assert scheduled_time(ExecOptions(relative_to=relative_to)) == expected


def test_scheduled_time_defaults_to_now():
    scheduled = scheduled_time(ExecOptions())
    now = datetime.now(UTC)

    assert scheduled.tzinfo is not None
    assert timedelta(0) < scheduled - now <= timedelta(days=1)
    assert scheduled.time() == datetime.min.time()


def test_workflow_engine_settings():
    engine = WorkflowEngine(MemoryStore(), FakeBackend(), serialization_secret="s3cr3t")

    assert engine.config.serialization_secret == "s3cr3t"
    assert engine.codec.secret_key == b"s3cr3t"
