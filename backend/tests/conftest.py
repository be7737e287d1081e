import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

TEST_DB = Path(__file__).resolve().parent / "test_materials.db"

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ENV"] = "dev"
os.environ["REGISTRY_ENABLED"] = "false"
os.environ.pop("API_AUTH_KEY", None)

from app.core.db import Base, SessionLocal, engine  # noqa: E402
from app import models  # noqa: E402,F401
from app.models.company import Company  # noqa: E402
from app.services.enrichment import EnrichmentCollector  # noqa: E402
from app.services.events import InMemoryEventDispatcher  # noqa: E402
from app.services.generation import GenerationDispatcher  # noqa: E402
from app.services.orchestrator import Caller  # noqa: E402
from app.services.storage import LocalObjectStore  # noqa: E402

from tests.fixtures.materials_fixtures import (  # noqa: E402
    ORG_ID,
    USER_ID,
    FakeAIGenerator,
    FakeRegistry,
    PipelineRunner,
    SAMPLE_REGISTRY_FACTS,
)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="session", autouse=True)
def _cleanup_db_file():
    yield
    engine.dispose()
    if TEST_DB.exists():
        TEST_DB.unlink()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def caller() -> Caller:
    return Caller(organization_id=ORG_ID, user_id=USER_ID)


@pytest.fixture()
def company(db) -> Company:
    record = Company(
        organization_id=ORG_ID,
        name="Nordic Widgets Oy",
        business_id="1234567-8",
        industry="Industrial automation",
        website="https://nordicwidgets.example",
        country="FI",
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture()
def dispatcher() -> InMemoryEventDispatcher:
    return InMemoryEventDispatcher()


@pytest.fixture()
def store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "assets", "/files")


@pytest.fixture()
def ai() -> FakeAIGenerator:
    return FakeAIGenerator()


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry(facts=SAMPLE_REGISTRY_FACTS)


@pytest.fixture()
def collector(registry, ai) -> EnrichmentCollector:
    return EnrichmentCollector(registry, ai, confirmation_threshold=60)


@pytest.fixture()
def generation(ai, store, dispatcher) -> GenerationDispatcher:
    return GenerationDispatcher(ai, store, dispatcher, max_retries=3)


@pytest.fixture()
def runner(dispatcher, collector, generation, ai, store) -> PipelineRunner:
    return PipelineRunner(dispatcher, collector, generation, ai, store)


@pytest.fixture()
def client(dispatcher, store):
    from app.main import app
    from app.api.deps import get_dispatcher, get_store

    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
