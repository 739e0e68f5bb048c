import os
import sys

import pytest
from httpx import ASGITransport, AsyncClient
from asgi_lifespan import LifespanManager

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)
os.environ.setdefault("ANYIO_BACKEND", "asyncio")

from profile_sync.main import app  # noqa: E402
from profile_sync.api.deps.session_guard import AuthenticatedUser, get_current_user  # noqa: E402
from profile_sync.api.services.reconciliation_service import ReconciliationService  # noqa: E402
from profile_sync.domain.models.identity import IdentityRecord, Project  # noqa: E402
from profile_sync.infrastructure.cache.saga_lock import InProcessSagaLock  # noqa: E402
from profile_sync.infrastructure.ipfs.batch_packer import BatchPacker  # noqa: E402

from fakes import (  # noqa: E402
    ALICE_ID,
    WALLET,
    FakeBlobStore,
    FakeMedia,
    FakeRegistry,
    FakeRepository,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def alice() -> IdentityRecord:
    """Unpublished identity with one project."""
    return IdentityRecord(
        id=ALICE_ID,
        username="alice",
        name="Alice",
        bio="Builds things",
        role="Senior",
        wallet_address=WALLET,
        projects=[Project(id="p1", name="P1", description="First project", tags=["python"])],
    )


@pytest.fixture
def repository(alice) -> FakeRepository:
    return FakeRepository(alice)


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def service(repository, blob_store, registry, media) -> ReconciliationService:
    return ReconciliationService(
        repository=repository,
        blob_store=blob_store,
        packer=BatchPacker(blob_store=blob_store, max_items=666, concurrency=4),
        registry=registry,
        media=media,
        saga_lock=InProcessSagaLock(),
        commit_backoff=0,
        commit_max_backoff=0,
    )


@pytest.fixture
def test_user() -> AuthenticatedUser:
    """Reusable authenticated session for dependency overrides."""
    return AuthenticatedUser(user_id=ALICE_ID, wallet_address=WALLET)


@pytest.fixture(autouse=True)
def override_auth_dependency(test_user: AuthenticatedUser):
    """
    Override the session dependency so protected routes
    can be exercised without a Redis session store.
    """

    async def _override_current_user() -> AuthenticatedUser:
        return test_user

    app.dependency_overrides[get_current_user] = _override_current_user
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client():
    """Shared HTTPX async client with FastAPI lifespan handling."""
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
