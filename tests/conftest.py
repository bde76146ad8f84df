from __future__ import annotations

import sys
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from urllib.parse import parse_qs, urlparse

# Ensure repo root is on sys.path so `import oauth_server` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from oauth_server.core.config import Settings  # noqa: E402
from oauth_server.db.engine import Database  # noqa: E402
from oauth_server.main import create_app  # noqa: E402
from oauth_server.services import pkce_service  # noqa: E402
from oauth_server.services.password_hasher import Sha256PasswordHasher  # noqa: E402
from oauth_server.services.provider import (  # noqa: E402
    AuthorizationProvider,
    ProviderConfig,
)

REDIRECT_URI = "http://localhost/callback"
TEST_USERNAME = "test-user"
TEST_PASSWORD = "test-password"


class FakeClock:
    """Settable epoch-seconds clock for expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "app_env": "test",
        "log_level": "info",
        "log_json": False,
        "port": 8000,
        "database_url": None,
        "redis_url": None,
        "db_path": str(tmp_path),
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Store / provider fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    db = Database(f"sqlite+aiosqlite:///{(tmp_path / 'oauth.db').as_posix()}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(database: Database, clock: FakeClock) -> AuthorizationProvider:
    return AuthorizationProvider.from_database(
        database, Sha256PasswordHasher(), ProviderConfig(), clock=clock
    )


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    # `with` runs the lifespan: tables created, provider on app.state
    with TestClient(create_app(settings), follow_redirects=False) as test_client:
        yield test_client


def register_client(
    client: TestClient, scope: str = "read write", **metadata
) -> dict:
    """POST /register and return the registration response."""
    body = {"redirect_uris": [REDIRECT_URI], "client_name": "Test Client", "scope": scope}
    body.update(metadata)
    resp = client.post("/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def authorize_params(registration: dict, challenge: str, **overrides) -> dict:
    params = {
        "client_id": registration["client_id"],
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "scope": "read",
        "state": "xyz",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


def obtain_code(
    client: TestClient, registration: dict, verifier: str, **overrides
) -> str:
    """Drive /authorize -> register user -> approve and return the code."""
    challenge = pkce_service.compute_code_challenge(verifier)
    resp = client.get("/authorize", params=authorize_params(registration, challenge, **overrides))
    assert resp.status_code == 200, resp.text

    resp = client.post(
        "/oauth/register",
        data={
            "username": TEST_USERNAME,
            "password": TEST_PASSWORD,
            "passwordConfirm": TEST_PASSWORD,
        },
    )
    if resp.status_code == 400:
        # user left over from an earlier call in the same test
        resp = client.post(
            "/oauth/login", data={"username": TEST_USERNAME, "password": TEST_PASSWORD}
        )
    assert resp.status_code == 200, resp.text

    resp = client.post("/oauth/authorize", data={"action": "approve"})
    assert resp.status_code == 302, resp.text
    return parse_qs(urlparse(resp.headers["location"]).query)["code"][0]


def token_form(registration: dict, **fields) -> dict:
    form = {
        "client_id": registration["client_id"],
        "client_secret": registration["client_secret"],
    }
    form.update(fields)
    return form
