import pytest
import pytest_asyncio
from tortoise import Tortoise

from app.core.db import MODELS_MODULES
from app.core.wiring import build_services
from app.testing.testing_mocks import InMemoryJobQueue, ManualClock


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite schema per test; transactions and unique constraints are real."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise._drop_databases()


@pytest.fixture
def clock():
    return ManualClock(start_ms=1_000_000)


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock=clock)


@pytest.fixture
def services(queue):
    return build_services(queue)
