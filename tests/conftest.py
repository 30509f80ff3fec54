import pytest

from svitlogics import ratelimit
from svitlogics.main import app


@pytest.fixture(autouse=True)
def _reset_state():
    ratelimit._reset()
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()
    ratelimit._reset()
