# tests/api/conftest.py
import pytest
from fastapi.testclient import TestClient

from portal.backend.main import app
from portal.backend.api.utilities.limiter import limiter


@pytest.fixture
def client():
    """
    A TestClient without the lifespan, so no database or Redis is needed.
    Tests replace the dependencies they touch through app.dependency_overrides.
    """
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Makes every protected route see the given principal."""
    from portal.backend.api.auth import get_current_user, get_optional_user

    def _login_as(principal):
        app.dependency_overrides[get_current_user] = lambda: principal
        app.dependency_overrides[get_optional_user] = lambda: principal

    return _login_as
