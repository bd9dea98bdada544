"""
Shared fixtures for the queue backend tests.

Tests run against a throwaway SQLite file; the environment is set before the
application package is imported so that the engine and settings pick it up.
Tables are recreated for every test.
"""

import json
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="musicscan-tests-")
os.environ.setdefault("MUSICSCAN_DATA_DIR", _TEST_DIR)
os.environ.setdefault("MUSICSCAN_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR}/test.db")
os.environ.setdefault("MUSICSCAN_INTER_ITEM_DELAY", "0")
os.environ.setdefault("MUSICSCAN_DISCOGS_IMPORT_DELAY", "0")
os.environ.setdefault("MUSICSCAN_RATE_LIMIT_SLEEP", "0")
os.environ.setdefault("MUSICSCAN_PAGE_DELAY", "0")
os.environ.setdefault("MUSICSCAN_RATE_LIMIT_ENABLED", "false")

import httpx  # noqa: E402
import pytest  # noqa: E402

import musicscan.models  # noqa: E402,F401
from musicscan.database import Base, async_session_maker, engine  # noqa: E402
from musicscan.middleware import rate_limiter  # noqa: E402
from musicscan.models import AppUser, UserRole  # noqa: E402
from musicscan.services.functions_client import FunctionsClient, set_functions_client  # noqa: E402
from musicscan.utils.security import hash_token  # noqa: E402

ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"


@pytest.fixture(autouse=True)
async def database():
    """Fresh tables for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    rate_limiter.reset()
    yield
    # Pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture
def session_factory():
    return async_session_maker


@pytest.fixture
async def db():
    async with async_session_maker() as session:
        yield session


class FakeFunctions:
    """
    Records calls to the sibling functions and answers them.

    ``responses`` maps a function name to a JSON body, an ``httpx.Response``
    or a callable taking the request body and returning either.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.responses: dict = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content) if request.content else {}
        self.calls.append((name, body))

        response = self.responses.get(name, {})
        if callable(response):
            response = response(body)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def called(self, name: str) -> list[dict]:
        return [body for called_name, body in self.calls if called_name == name]


@pytest.fixture
def functions():
    """Route every sibling function call to a FakeFunctions instance."""
    fake = FakeFunctions()
    set_functions_client(FunctionsClient(
        base_url="http://functions.test/functions/v1",
        service_key="test-service-key",
        transport=httpx.MockTransport(fake.handler),
        rate_limit_sleep=0,
    ))
    yield fake
    set_functions_client(None)


@pytest.fixture
async def client():
    """HTTP client talking to the app in-process."""
    from musicscan.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
async def users(db):
    """One admin and one regular user with known bearer tokens."""
    admin = AppUser(id="admin-1", email="admin@example.com", api_token_hash=hash_token(ADMIN_TOKEN))
    user = AppUser(id="user-1", email="user@example.com", api_token_hash=hash_token(USER_TOKEN))
    db.add_all([admin, user])
    await db.flush()
    db.add(UserRole(user_id=admin.id, role="admin"))
    await db.commit()
    return {"admin": admin, "user": user}


@pytest.fixture
def admin_headers(users):
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def user_headers(users):
    return {"Authorization": f"Bearer {USER_TOKEN}"}
