import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before authlab.app builds its module-level app
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ACTUATOR_PASSWORD", "actuator-test-password")
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "1024")
os.environ.setdefault("PASSWORD_HASH_PARALLELISM", "1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authlab.app import create_app  # noqa: E402
from authlab.config import Settings  # noqa: E402
from authlab.service.runtime import Runtime, reset_runtime_for_tests  # noqa: E402

TEST_JWT_SECRET = "unit-test-signing-key-0123456789abcdef"
ACTUATOR_USER = "actuator"
ACTUATOR_PASSWORD = "actuator-test-password"


class RecordingLogger:
    """Collects ``(event, fields)`` pairs in place of a structlog logger."""

    def __init__(self):
        self.events = []

    def info(self, event, **fields):
        self.events.append((event, fields))

    warning = info
    error = info


def make_settings(**overrides) -> Settings:
    values = dict(
        jwt_secret=TEST_JWT_SECRET,
        token_validity_minutes=60,
        management_password=ACTUATOR_PASSWORD,
        password_hash_time_cost=1,
        password_hash_memory_cost=1024,
        password_hash_parallelism=1,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def runtime(settings):
    return Runtime(settings)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def user_token(client):
    response = client.post("/auth/login", json={"username": "user", "password": "password"})
    assert response.status_code == 200
    return response.json()["token"]


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
