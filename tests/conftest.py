from __future__ import annotations

import pytest
import pytest_asyncio

from heyso.client.storage import MemoryStorage
from heyso.services.container import HeysoServices
from tests.fakes import BASE_URL, TOKEN, FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest_asyncio.fixture
async def services(backend: FakeBackend, storage: MemoryStorage):
    bundle = HeysoServices.create(
        storage=storage, transport=backend.transport, base_url=BASE_URL
    )
    try:
        yield bundle
    finally:
        await bundle.aclose()


@pytest.fixture
def signed_in(services: HeysoServices) -> HeysoServices:
    services.session.set_auth(TOKEN, userId=1, nickname="tester")
    return services
