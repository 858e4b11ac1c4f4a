import pytest
from fastapi.testclient import TestClient

from doof.main import app
from doof.models.bulk_add import Neighborhood
from doof.services import batch_repository as batch_repository_module
from doof.services.bulk_add_orchestrator import get_bulk_add_orchestrator
from tests.stubs import (
    StubListAppender,
    StubNeighborhoodLookup,
    StubPlacesProvider,
    build_orchestrator,
    make_candidates,
    make_details,
)


# Configure anyio to use only asyncio backend
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def places_provider() -> StubPlacesProvider:
    return StubPlacesProvider(
        searches={
            "Joe's Pizza": make_candidates("joes"),
            "Katz's Deli, Manhattan": make_candidates("katz"),
            "Shake Shack, NYC": make_candidates("shack-madison", "shack-astor"),
            "Nowhere Diner": [],
        },
        details={
            "joes": make_details("joes", "Joe's Pizza", "7 Carmine St, New York, NY 10014, USA"),
            "katz": make_details("katz", "Katz's Delicatessen", "205 E Houston St, New York, NY 10002, USA"),
            "shack-madison": make_details("shack-madison", "Shake Shack Madison Square Park"),
            "shack-astor": make_details("shack-astor", "Shake Shack Astor Place"),
        },
    )


@pytest.fixture()
def list_appender() -> StubListAppender:
    return StubListAppender()


@pytest.fixture()
def neighborhood_lookup() -> StubNeighborhoodLookup:
    return StubNeighborhoodLookup({"10014": Neighborhood(7, "West Village", "New York")})


@pytest.fixture(autouse=True)
def override_bulk_add_orchestrator(places_provider, list_appender, neighborhood_lookup):
    orchestrator = build_orchestrator(places_provider, list_appender, neighborhoods=neighborhood_lookup)
    app.dependency_overrides[get_bulk_add_orchestrator] = lambda: orchestrator
    yield orchestrator
    app.dependency_overrides.pop(get_bulk_add_orchestrator, None)


@pytest.fixture(autouse=True)
def override_batch_repository():
    repo = batch_repository_module.InMemoryBatchRepository(30 * 60)
    app.dependency_overrides[batch_repository_module.get_batch_repository] = lambda: repo
    yield repo
    app.dependency_overrides.pop(batch_repository_module.get_batch_repository, None)


@pytest.fixture()
def test_client() -> TestClient:
    with TestClient(app) as client:
        yield client
