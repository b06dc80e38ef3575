import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mindscreen.api.deps import get_notifier, get_store
from mindscreen.db.base import Base
from mindscreen.db import models  # noqa: F401
from mindscreen.db.session import get_db
from mindscreen.main import app
from mindscreen.services.answers import finalize_answer
from mindscreen.services.catalog import default_catalog
from mindscreen.services.notifications import RecordingNotifier
from mindscreen.services.scoring_registry import default_registry
from mindscreen.services.storage import InMemorySessionStore


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def phq9(catalog):
    return catalog.get("phq-9")


@pytest.fixture
def gad7(catalog):
    return catalog.get("gad-7")


@pytest.fixture
def answers_for():
    """Build a FinalizedAnswerList for the first len(values) questions, in order."""

    def _build(questionnaire, values):
        return tuple(
            finalize_answer(q, str(v)) for q, v in zip(questionnaire.questions, values)
        )

    return _build


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def client(db_session, notifier, store):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
