"""Demo: walk the full Authorization Code + PKCE flow using FastAPI TestClient.

Runs against a throwaway SQLite database in a temp directory.

Run with:
    python scripts/demo_pkce_flow.py
"""

from __future__ import annotations

import tempfile
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from oauth_server.core.config import Settings
from oauth_server.main import create_app
from oauth_server.services import pkce_service

REDIRECT_URI = "http://localhost/callback"
USERNAME = "demo-user"
PASSWORD = "demo-pass"


def main() -> None:
    with tempfile.TemporaryDirectory() as db_path:
        settings = Settings(
            app_env="test",
            log_level="warning",
            log_json=False,
            port=8000,
            database_url=None,
            redis_url=None,
            db_path=db_path,
        )
        with TestClient(create_app(settings), follow_redirects=False) as client:
            _walk(client)


def _walk(client: TestClient) -> None:
    # ── Step 1: dynamic client registration ─────────────────────────
    r = client.post(
        "/register",
        json={"redirect_uris": [REDIRECT_URI], "client_name": "Demo", "scope": "read write"},
    )
    registration = r.json()
    client_id = registration["client_id"]
    client_secret = registration["client_secret"]
    print(f"1. POST /register          → {r.status_code}  client_id={client_id}")

    # ── Step 2: GET /authorize (no session) ─────────────────────────
    verifier = pkce_service.generate_code_verifier()
    params = {
        "client_id": client_id,
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "code_challenge": pkce_service.compute_code_challenge(verifier),
        "code_challenge_method": "S256",
        "scope": "read",
        "state": "demo-state",
    }
    r = client.get("/authorize", params=params)
    print(f"2. GET  /authorize         → {r.status_code}  (login page, cookie set)")

    # ── Step 3: register a user (logs the session in) ───────────────
    r = client.post(
        "/oauth/register",
        data={"username": USERNAME, "password": PASSWORD, "passwordConfirm": PASSWORD},
    )
    print(f"3. POST /oauth/register    → {r.status_code}  (consent page)")

    # ── Step 4: approve ─────────────────────────────────────────────
    r = client.post("/oauth/authorize", data={"action": "approve"})
    query = parse_qs(urlparse(r.headers["location"]).query)
    code = query["code"][0]
    print(
        f"4. POST /oauth/authorize   → {r.status_code}  "
        f"code={code[:12]}…  state={query['state'][0]}"
    )

    # ── Step 5: POST /token ─────────────────────────────────────────
    token_form = {
        "grant_type": "authorization_code",
        "code": code,
        "code_verifier": verifier,
        "redirect_uri": REDIRECT_URI,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    r = client.post("/token", data=token_form)
    tokens = r.json()
    print(
        f"5. POST /token             → {r.status_code}  "
        f"scope={tokens['scope']}  expires_in={tokens['expires_in']}s"
    )

    # ── Step 6: protected resource ──────────────────────────────────
    r = client.get(
        "/resource/me", headers={"Authorization": f"Bearer {tokens['access_token']}"}
    )
    print(f"6. GET  /resource/me       → {r.status_code}  {r.json()}")

    # ── Step 7: replay the code ─────────────────────────────────────
    r = client.post("/token", data=token_form)
    print(f"7. POST /token (replay)    → {r.status_code}  {r.json()['error']}")

    # ── Step 8: refresh ─────────────────────────────────────────────
    r = client.post(
        "/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": tokens["refresh_token"],
            "client_id": client_id,
            "client_secret": client_secret,
        },
    )
    print(f"8. POST /token (refresh)   → {r.status_code}  scope={r.json()['scope']}")

    print("\nAll steps completed.")


if __name__ == "__main__":
    main()
