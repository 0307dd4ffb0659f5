# tests/conftest.py
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from firealarm.db import get_db, init_db
from firealarm.main import app
from firealarm.models import User
from firealarm.realtime import ConnectionManager


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    admin = User(username="admin", email="admin@example.com", role="admin")
    alice = User(username="alice", email="alice@example.com", role="user")
    bob = User(username="bob", email="bob@example.com", role="user")
    inactive = User(username="pending", email="pending@example.com", role="user", is_active=False)
    db.add_all([admin, alice, bob, inactive])
    db.commit()
    return {"admin": admin, "alice": alice, "bob": bob, "inactive": inactive}


@pytest.fixture
def hub():
    return ConnectionManager()


@pytest.fixture
def client(db, hub):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    previous_hub = app.state.hub
    app.state.hub = hub
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.hub = previous_hub
