#!/usr/bin/env python3
"""Load test script: demonstrates rate limiting on the token endpoint.

RUN:  python scripts/load_test_rate_limit.py

Registers a client, then sends TOTAL_REQUESTS refresh-token grants with a
bogus refresh token in rapid succession.  Each one that gets through is
rejected with 400 invalid_grant; once the bucket is empty the limiter
answers 429 instead.

Prerequisites:
  - The server must be running: uvicorn oauth_server.main:app --port 8000
"""

from __future__ import annotations

import time

import httpx

from oauth_server.api.ratelimit import TOKEN_LIMIT

BASE_URL = "http://localhost:8000"
TOTAL_REQUESTS = 100


def main() -> None:
    print("Rate Limit Load Test")
    print("=" * 50)
    print(f"Target: {BASE_URL}/token")
    print(f"Total requests: {TOTAL_REQUESTS}")
    print()

    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        resp = client.post(
            "/register", json={"redirect_uris": ["http://localhost/callback"]}
        )
        resp.raise_for_status()
        registration = resp.json()
        form = {
            "grant_type": "refresh_token",
            "refresh_token": "not-a-real-token",
            "client_id": registration["client_id"],
            "client_secret": registration["client_secret"],
        }

        results: dict[int, int] = {}
        start = time.monotonic()
        for i in range(TOTAL_REQUESTS):
            resp = client.post("/token", data=form)
            results[resp.status_code] = results.get(resp.status_code, 0) + 1
            if (i + 1) % 20 == 0:
                print(f"  Sent {i + 1}/{TOTAL_REQUESTS} requests...")
        elapsed = time.monotonic() - start

    print()
    print(f"Results after {TOTAL_REQUESTS} requests ({elapsed:.2f}s):")
    print("─" * 40)
    rejected = results.get(400, 0)
    throttled = results.get(429, 0)
    other = sum(v for k, v in results.items() if k not in (400, 429))
    print(f"  Reached handler (400): {rejected:>4}")
    print(f"  Throttled       (429): {throttled:>4}")
    if other:
        print(f"  Other:                 {other:>4}")

    print()
    print(f"Token bucket capacity: {TOKEN_LIMIT.capacity}")
    print(f"Refill rate: {TOKEN_LIMIT.refill_rate} tokens/second")
    print()
    if throttled:
        print("Rate limiting is working: the burst passed, the rest was throttled.")
    else:
        print("WARNING: No requests were throttled.")


if __name__ == "__main__":
    main()
