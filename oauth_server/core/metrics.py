"""Prometheus metric inventory.

All metrics are declared here and incremented where the behaviour lives:
HTTP metrics in the MetricsMiddleware, OAuth metrics in the provider,
cleanup metrics in the CleanupTask, rate-limit hits in api/ratelimit.

Useful queries:
  rate(oauth_tokens_issued_total{type="access"}[5m])   tokens per second
  oauth_login_attempts_total{result="failure"}         brute-force signal
  increase(oauth_cleanup_failures_total[1h]) > 0       sweeps are failing
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------

TOKENS_ISSUED = Counter(
    "oauth_tokens_issued_total",
    "Tokens minted by the provider",
    ["type", "grant_type"],  # access|refresh, authorization_code|refresh_token
)

LOGIN_ATTEMPTS = Counter(
    "oauth_login_attempts_total",
    "Login and registration form submissions by result",
    ["form", "result"],  # login|register, success|failure
)

CONSENT_DECISIONS = Counter(
    "oauth_consent_decisions_total",
    "Consent screen decisions",
    ["decision"],  # approve|deny
)

# ---------------------------------------------------------------------------
# Background cleanup
# ---------------------------------------------------------------------------

CLEANUP_REMOVED = Counter(
    "oauth_cleanup_removed_total",
    "Expired rows removed by cleanup sweeps",
    ["collection"],
)

CLEANUP_FAILURES = Counter(
    "oauth_cleanup_failures_total",
    "Cleanup sweeps that raised",
    ["task"],
)

# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["endpoint"],
)
