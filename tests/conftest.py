import pytest

from viewgraph import MemoryStore

from .projections import FIXTURE_GRAPH, fixture_registry


@pytest.fixture(
    params=[
        pytest.param(("asyncio", {"use_uvloop": False}), id="asyncio"),
        pytest.param(
            ("trio", {"restrict_keyboard_interrupt_to_checkpoints": True}), id="trio"
        ),
    ],
    scope="session",
)
def anyio_backend(request):
    return request.param


@pytest.fixture
def graph():
    return {name: list(deps) for name, deps in FIXTURE_GRAPH.items()}


@pytest.fixture
def registry():
    return fixture_registry()


@pytest.fixture
def store(registry):
    return MemoryStore.from_projections(registry.list())
