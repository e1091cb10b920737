import os

# must be set before livescreen.settings is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["IMPORT_CATALOG_ON_STARTUP"] = "false"
os.environ["TIMER_TICK_SECONDS"] = "0.02"
os.environ["RECONNECT_INITIAL_SECONDS"] = "0.01"
os.environ["RECONNECT_MAX_SECONDS"] = "0.05"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from livescreen.database import Base, get_db, get_session_factory
from livescreen.main import app
from livescreen.models.student import Student
from livescreen.settings import settings
from livescreen.utils.channel import hub
from livescreen.utils.controller import registry
from livescreen.utils.subtest_loader import import_all


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(db_factory):
    session = db_factory()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    result = import_all(db, settings.catalog_dir, stop_on_error=True)
    db.add(Student(id="stu-1", full_name="Test Student", grade="2"))
    db.commit()
    return result


@pytest.fixture(autouse=True)
def reset_runtime():
    registry.clear()
    hub.close()
    yield
    registry.clear()
    hub.close()


@pytest.fixture
def client(db_factory, catalog):
    def override_get_db():
        session = db_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: db_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def new_session(client):
    """Create a session; returns (session_id, assessor headers)."""
    def _create(student_id="stu-1"):
        r = client.post("/sessions", json={"student_id": student_id})
        assert r.status_code == 201, r.text
        body = r.json()
        return body["id"], {"X-Assessor-Token": body["assessor_token"]}
    return _create
