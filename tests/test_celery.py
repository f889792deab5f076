from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

pytest.importorskip("celery")

from celery import Celery  # noqa: E402

from viewgraph import Scope, WorkflowEngine, rank  # noqa: E402
from viewgraph.engine import Job  # noqa: E402
from viewgraph.engine.celery import (  # noqa: E402
    TASK_NAME,
    CeleryBackend,
    layers,
    register_worker,
)
from viewgraph.serialization import ZstdJsonCodec  # noqa: E402

AT = datetime(2024, 1, 2, tzinfo=UTC)


@pytest.fixture
def celery_app():
    return Celery("viewgraph-tests", set_as_current=False)


@pytest.fixture
def jobs():
    a = Job(id="a", payload="pa", scheduled_at=AT)
    b = Job(id="b", payload="pb", scheduled_at=AT)
    c = Job(id="c", payload="pc", scheduled_at=AT, depends_on=("a", "b"))
    e = Job(id="e", payload="pe", scheduled_at=AT, depends_on=("a", "b"))
    f = Job(id="f", payload="pf", scheduled_at=AT, depends_on=("c", "e"))
    return [a, b, c, e, f]


def test_layers(jobs):
    assert [[job.id for job in layer] for layer in layers(jobs)] == [
        ["a", "b"],
        ["c", "e"],
        ["f"],
    ]


def test_signature(celery_app):
    job = Job(id="j", payload="p", scheduled_at=AT, priority=5, queue="urgent")

    signature = CeleryBackend(celery_app).signature(job)

    assert signature.task == TASK_NAME
    assert tuple(signature.args) == ("p",)
    assert signature.immutable
    assert signature.options["task_id"] == "j"
    assert signature.options["queue"] == "urgent"
    assert signature.options["priority"] == 5
    assert signature.options["eta"] == AT


@pytest.mark.anyio
async def test_submit(celery_app, jobs, monkeypatch):
    backend = CeleryBackend(celery_app)
    workflow = MagicMock()
    monkeypatch.setattr(backend, "workflow", MagicMock(return_value=workflow))

    await backend.submit(jobs)

    backend.workflow.assert_called_once_with(jobs)
    workflow.apply_async.assert_called_once_with()


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("state", "status"),
    [
        ("PENDING", "scheduled"),
        ("RECEIVED", "ready"),
        ("STARTED", "executing"),
        ("RETRY", "executing"),
        ("SUCCESS", "completed"),
        ("FAILURE", "failure"),
        ("REVOKED", "revoked"),
    ],
)
async def test_status(celery_app, monkeypatch, state, status):
    monkeypatch.setattr(
        "viewgraph.engine.celery.AsyncResult",
        lambda job_id, app: SimpleNamespace(state=state),
    )

    assert await CeleryBackend(celery_app).status("j") == status


def test_worker(celery_app):
    derived = []

    async def work_fn(name, scope):
        derived.append((name, scope))

    task = register_worker(celery_app, work_fn, secret="s3cr3t")
    payload = ZstdJsonCodec("s3cr3t").encode("totals", Scope.build({"day": 1}))

    task(payload)

    assert task.name == TASK_NAME
    assert derived == [("totals", Scope.build({"day": 1}))]


@pytest.mark.anyio
async def test_worker_inside_event_loop(celery_app):
    async def work_fn(name, scope): ...

    task = register_worker(celery_app, work_fn)
    payload = ZstdJsonCodec("supersecretsecret").encode("totals", Scope())

    with pytest.raises(RuntimeError, match="inside an event loop"):
        task(payload)


@pytest.mark.anyio
async def test_jobs_use_the_configured_queue(celery_app, graph, store):
    backend = CeleryBackend(celery_app)
    submitted = []

    async def submit(jobs):
        submitted.extend(backend.signature(job) for job in jobs)

    backend.submit = submit

    async def _noop(name, scope): ...

    await WorkflowEngine(store, backend).exec(
        rank(graph, "e"), _noop, Scope.build({"day": 1})
    )
    await WorkflowEngine(store, backend, default_queue="celery").exec(
        rank(graph, "a"), _noop, Scope.build({"day": 1})
    )

    # workers have to consume `default` unless the queue is configured otherwise
    assert [sig.options["queue"] for sig in submitted] == [
        "default",
        "default",
        "celery",
    ]
