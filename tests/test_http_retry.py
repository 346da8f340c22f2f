# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for HTTP retry logic (HttpRetryConfig, HttpTransientError, retry helpers).

Tests use ``_FlakyBackend`` behind ``httpx.MockTransport`` and an injected
``_sleep`` that records delays instead of sleeping.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from tests.conftest import FakeBackend
from upload_bridge.rpc import RpcError
from upload_bridge.rpc._retry import (
    HttpRetryConfig,
    HttpTransientError,
    _compute_delay,
    _parse_retry_after,
    _post_with_retry,
)

_URL = "http://sdk.test/"
_BODY = json.dumps({"jsonrpc": "2.0", "method": "status", "id": 1}).encode()
_HEADERS = {"Content-Type": "application/json"}

# ---------------------------------------------------------------------------
# Test infrastructure: transient-failure wrapper around FakeBackend
# ---------------------------------------------------------------------------


class _FlakyBackend:
    """Answers the first ``failures`` requests with an error, then delegates.

    A failure is either an HTTP status (with an optional ``Retry-After``) or,
    when ``exc`` is set, a raised transport exception.
    """

    def __init__(
        self,
        *,
        failure_status: int = 502,
        failures: int = 1,
        retry_after: str | None = None,
        exc: type[httpx.TransportError] | None = None,
    ) -> None:
        self._real = FakeBackend()
        self._failure_status = failure_status
        self._failures_remaining = failures
        self._retry_after = retry_after
        self._exc = exc
        self.call_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        """Fail or delegate one request."""
        self.call_count += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            if self._exc is not None:
                raise self._exc("transient", request=request)
            headers = {"Retry-After": self._retry_after} if self._retry_after is not None else {}
            return httpx.Response(self._failure_status, content=b"<html>Bad Gateway</html>", headers=headers)
        return self._real(request)


@pytest.fixture
def flaky() -> _FlakyBackend:
    """Backend failing once with 502."""
    return _FlakyBackend()


def _client(backend: _FlakyBackend) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(backend))


def _post(backend: _FlakyBackend, config: HttpRetryConfig | None, sleeps: list[float] | None = None) -> httpx.Response:
    delays = sleeps if sleeps is not None else []
    with _client(backend) as client:
        return _post_with_retry(client, _URL, content=_BODY, headers=_HEADERS, config=config, _sleep=delays.append)


# ---------------------------------------------------------------------------
# Unit tests: HttpRetryConfig
# ---------------------------------------------------------------------------


class TestHttpRetryConfig:
    """Tests for HttpRetryConfig dataclass."""

    def test_defaults(self) -> None:
        """Default config has sensible values."""
        cfg = HttpRetryConfig()
        assert cfg.max_retries == 3
        assert cfg.backoff_base == 0.5
        assert cfg.backoff_max == 30.0
        assert cfg.retryable_status_codes == frozenset({429, 502, 503, 504})
        assert cfg.retry_on_connection_error is True
        assert cfg.respect_retry_after is True

    def test_frozen(self) -> None:
        """Config is immutable."""
        cfg = HttpRetryConfig()
        with pytest.raises(AttributeError):
            cfg.max_retries = 5  # type: ignore[misc]

    def test_negative_max_retries_rejected(self) -> None:
        """max_retries < 0 raises ValueError at construction."""
        with pytest.raises(ValueError, match="max_retries must be >= 0"):
            HttpRetryConfig(max_retries=-1)

    def test_negative_backoff_base_rejected(self) -> None:
        """backoff_base < 0 raises ValueError at construction."""
        with pytest.raises(ValueError, match="backoff_base must be >= 0"):
            HttpRetryConfig(backoff_base=-0.5)

    def test_negative_backoff_max_rejected(self) -> None:
        """backoff_max < 0 raises ValueError at construction."""
        with pytest.raises(ValueError, match="backoff_max must be >= 0"):
            HttpRetryConfig(backoff_max=-1.0)


class TestHttpTransientError:
    """Tests for HttpTransientError."""

    def test_is_rpc_error_subclass(self) -> None:
        """HttpTransientError is caught by except RpcError."""
        assert isinstance(HttpTransientError(502, "Bad Gateway"), RpcError)

    def test_attributes(self) -> None:
        """Status code and retry_after are preserved."""
        err = HttpTransientError(429, "Too Many", retry_after=5.0)
        assert err.status_code == 429
        assert err.retry_after == 5.0
        assert "HTTP 429" in str(err)


# ---------------------------------------------------------------------------
# Unit tests: _parse_retry_after / _compute_delay
# ---------------------------------------------------------------------------


class TestParseRetryAfter:
    """Tests for Retry-After header parsing."""

    def test_delta_seconds(self) -> None:
        """Parse delta-seconds."""
        assert _parse_retry_after("120") == 120.0
        assert _parse_retry_after("1.5") == 1.5

    def test_http_date(self) -> None:
        """Parse HTTP-date format (RFC 9110)."""
        from email.utils import format_datetime

        future = datetime.now(tz=UTC) + timedelta(hours=1)
        result = _parse_retry_after(format_datetime(future, usegmt=True))
        assert result is not None
        assert 3500 < result <= 3600

    def test_http_date_in_past_returns_zero(self) -> None:
        """HTTP-date in the past returns 0."""
        assert _parse_retry_after("Mon, 01 Jan 2001 00:00:00 GMT") == 0.0

    def test_unparseable(self) -> None:
        """Unparseable values return None."""
        assert _parse_retry_after("not-a-number-or-date") is None


class TestComputeDelay:
    """Tests for backoff delay computation."""

    def test_exponential_progression(self) -> None:
        """Delay upper bound grows exponentially."""
        cfg = HttpRetryConfig(backoff_base=1.0, backoff_max=100.0)
        for attempt in range(4):
            upper = cfg.backoff_base * (2**attempt)
            for _ in range(20):
                assert 0 <= _compute_delay(attempt, cfg, None) <= upper + 0.001

    def test_clamped_to_max(self) -> None:
        """Delay never exceeds backoff_max."""
        cfg = HttpRetryConfig(backoff_base=100.0, backoff_max=2.0)
        for _ in range(50):
            assert _compute_delay(5, cfg, None) <= 2.0 + 0.001

    def test_retry_after_honored(self) -> None:
        """When retry_after > computed delay, retry_after is used."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=100.0)
        assert _compute_delay(0, cfg, 10.0) >= 10.0

    def test_retry_after_clamped(self) -> None:
        """retry_after is clamped to backoff_max."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=5.0)
        assert _compute_delay(0, cfg, 100.0) <= 5.0 + 0.001

    def test_respect_retry_after_false(self) -> None:
        """When respect_retry_after=False, retry_after is ignored."""
        cfg = HttpRetryConfig(backoff_base=0.001, backoff_max=100.0, respect_retry_after=False)
        for _ in range(50):
            assert _compute_delay(0, cfg, 999.0) <= 0.002


# ---------------------------------------------------------------------------
# Unit tests: _post_with_retry
# ---------------------------------------------------------------------------


class TestPostWithRetry:
    """Tests for _post_with_retry."""

    def test_no_config_no_retry(self, flaky: _FlakyBackend) -> None:
        """When config is None, the failure response is returned as-is."""
        resp = _post(flaky, None)
        assert resp.status_code == 502
        assert flaky.call_count == 1

    def test_retries_on_502(self) -> None:
        """Retries on 502 and succeeds after transient failures."""
        backend = _FlakyBackend(failures=2)
        resp = _post(backend, HttpRetryConfig(max_retries=3))
        assert resp.status_code == 200
        assert backend.call_count == 3

    def test_exhausted_raises_transient_error(self) -> None:
        """Persistent failures raise HttpTransientError with a body preview."""
        backend = _FlakyBackend(failures=10)
        with pytest.raises(HttpTransientError, match="Bad Gateway") as exc_info:
            _post(backend, HttpRetryConfig(max_retries=2))
        assert exc_info.value.status_code == 502
        assert backend.call_count == 3

    def test_no_retry_on_non_transient(self) -> None:
        """A 500 is not retried and is returned to the caller."""
        backend = _FlakyBackend(failure_status=500, failures=1)
        resp = _post(backend, HttpRetryConfig(max_retries=3))
        assert resp.status_code == 500
        assert backend.call_count == 1

    def test_max_retries_zero(self) -> None:
        """With max_retries=0 the first transient failure raises."""
        backend = _FlakyBackend(failures=1)
        with pytest.raises(HttpTransientError):
            _post(backend, HttpRetryConfig(max_retries=0))
        assert backend.call_count == 1

    def test_retry_after_preserved_in_error(self) -> None:
        """The last Retry-After value is carried on the error."""
        backend = _FlakyBackend(failure_status=503, failures=5, retry_after="0")
        with pytest.raises(HttpTransientError) as exc_info:
            _post(backend, HttpRetryConfig(max_retries=1))
        assert exc_info.value.retry_after == 0.0

    def test_backoff_delay_called(self) -> None:
        """The sleep function is called once per retry."""
        backend = _FlakyBackend(failures=2)
        sleeps: list[float] = []
        _post(backend, HttpRetryConfig(max_retries=3, backoff_base=0.01), sleeps)
        assert len(sleeps) == 2

    def test_connection_error_retried(self) -> None:
        """Connection errors are retried when enabled."""
        backend = _FlakyBackend(failures=1, exc=httpx.ConnectError)
        assert _post(backend, HttpRetryConfig(max_retries=2)).status_code == 200
        assert backend.call_count == 2

    def test_timeout_retried(self) -> None:
        """Timeouts are retried like connection errors."""
        backend = _FlakyBackend(failures=1, exc=httpx.ReadTimeout)
        assert _post(backend, HttpRetryConfig(max_retries=2)).status_code == 200

    def test_connection_error_not_retried_when_disabled(self) -> None:
        """With retry_on_connection_error=False the error propagates immediately."""
        backend = _FlakyBackend(failures=1, exc=httpx.ConnectError)
        with pytest.raises(httpx.ConnectError):
            _post(backend, HttpRetryConfig(max_retries=2, retry_on_connection_error=False))
        assert backend.call_count == 1

    def test_connection_error_exhausted(self) -> None:
        """Connection errors beyond max_retries propagate."""
        backend = _FlakyBackend(failures=5, exc=httpx.ConnectError)
        with pytest.raises(httpx.ConnectError):
            _post(backend, HttpRetryConfig(max_retries=1))
        assert backend.call_count == 2
