import pytest
from fastapi.testclient import TestClient

from taskboard.main import app, get_storage
from taskboard.storage import MemoryStorage


@pytest.fixture
def store():
    return MemoryStorage()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_storage] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
