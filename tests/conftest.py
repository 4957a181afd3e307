import asyncio
import inspect
import os
import tempfile

# Configure the environment before anything builds a runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="todos_test_")
os.environ.setdefault("MODE", "test")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("TOKEN_CLEANUP", "false")
os.environ.setdefault("TODOS_CONFIG_DIR", os.path.join(_test_tmp_dir, "config"))
# Cheap derived keys so each login does not allocate 64MB
os.environ.setdefault("DK_TIME_COST", "1")
os.environ.setdefault("DK_MEMORY_COST", "1024")
os.environ.setdefault("DK_PARALLELISM", "1")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from todos.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "AdminPassword123!"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def runtime():
    return get_runtime()


@pytest.fixture
def client():
    """Test client for the API; lifespan events are not run."""
    from todos.app import app

    return TestClient(app)


@pytest.fixture
def admin_user(runtime):
    return runtime.auth.register(
        ADMIN_USERNAME, "admin@example.com", ADMIN_PASSWORD, is_admin=True
    )


@pytest.fixture
def admin_headers(client, admin_user):
    response = client.post(
        "/login",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD, "no_cookie": True},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


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
