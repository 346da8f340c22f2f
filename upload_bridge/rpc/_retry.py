# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Retry policy for the POST to a user's backend.

Backends sit behind proxies that answer 429/502/503/504 while an SDK
instance restarts or is overloaded.  ``_post_with_retry`` re-sends the same
JSON-RPC body on those statuses (and, optionally, on connect errors and
timeouts) with jittered exponential backoff.  Retries are opt-in: with no
``HttpRetryConfig`` the POST is made exactly once.

Attempts are logged at DEBUG on ``upload_bridge.rpc.retry``.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

from upload_bridge.rpc._common import RpcError

_logger = logging.getLogger("upload_bridge.rpc.retry")

_TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 502, 503, 504})
_PREVIEW_BYTES = 200


@dataclass(frozen=True)
class HttpRetryConfig:
    """When and how long to wait before re-sending a backend call.

    Attributes:
        max_retries: Extra attempts after the first; ``0`` sends once.
        backoff_base: Upper bound in seconds of the first delay; it doubles
            with every attempt.
        backoff_max: Cap in seconds on any single delay.
        retryable_status_codes: Statuses that trigger a retry.
        retry_on_connection_error: Also retry connect errors and timeouts.
        respect_retry_after: Wait at least as long as the backend's
            ``Retry-After`` asks (still capped by *backoff_max*).

    Raises:
        ValueError: If any numeric field is negative.

    """

    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    retryable_status_codes: frozenset[int] = field(default_factory=lambda: _TRANSIENT_STATUSES)
    retry_on_connection_error: bool = True
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        """Reject negative settings."""
        for name in ("max_retries", "backoff_base", "backoff_max"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

    @property
    def attempts(self) -> int:
        """Total number of sends, first one included."""
        return self.max_retries + 1


class HttpTransientError(RpcError):
    """The backend kept answering with a retryable status.

    An ``RpcError``, so the bridge reports and translates it like any other
    dispatch failure.

    Attributes:
        status_code: Status of the last response.
        retry_after: That response's ``Retry-After`` in seconds, if it sent one.

    """

    def __init__(self, status_code: int, body_preview: str, retry_after: float | None = None) -> None:
        """Build the message from the last status and body preview."""
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code} from backend after retries exhausted (body: {body_preview!r})")


def _parse_retry_after(value: str) -> float | None:
    """Return a ``Retry-After`` value in seconds, or ``None`` if unparseable.

    Accepts delta-seconds and HTTP-dates; dates in the past yield ``0``.
    """
    try:
        return float(value)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (when - datetime.now(tz=UTC)).total_seconds())


def _compute_delay(attempt: int, config: HttpRetryConfig, retry_after: float | None) -> float:
    """Pick the wait before retry number ``attempt + 1``.

    Full jitter over ``[0, backoff_base * 2**attempt]``, capped at
    ``backoff_max``; a server-requested delay raises the floor.
    """
    ceiling = config.backoff_base * (2**attempt)
    delay = min(random.uniform(0, ceiling), config.backoff_max)
    if retry_after is not None and config.respect_retry_after:
        delay = max(delay, min(retry_after, config.backoff_max))
    return delay


def _body_preview(content: bytes) -> str:
    """Decode the start of a response body for error messages."""
    if not content:
        return ""
    return content[:_PREVIEW_BYTES].decode(errors="replace")


def _retry_after_of(resp: httpx.Response) -> float | None:
    header = resp.headers.get("Retry-After")
    return _parse_retry_after(header) if header is not None else None


def _post_with_retry(
    client: httpx.Client,
    url: str,
    *,
    content: bytes,
    headers: dict[str, str],
    config: HttpRetryConfig | None,
    _sleep: Callable[[float], object] = time.sleep,
) -> httpx.Response:
    """POST *content* to *url*, re-sending on transient failures.

    Args:
        client: Client to send with.
        url: Backend endpoint.
        content: Encoded JSON-RPC request.
        headers: Request headers.
        config: Retry policy; ``None`` sends once and returns whatever comes back.
        _sleep: Replaceable in tests.

    Returns:
        The first response whose status is not retryable.  Error statuses
        outside the retryable set are returned, not raised.

    Raises:
        HttpTransientError: Every attempt got a retryable status.
        httpx.ConnectError: Connection kept failing (or is not retried).
        httpx.TimeoutException: Requests kept timing out (or are not retried).

    """
    if config is None:
        return client.post(url, content=content, headers=headers)

    last: httpx.Response | None = None
    for attempt in range(config.attempts):
        final = attempt == config.max_retries
        try:
            resp = client.post(url, content=content, headers=headers)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            if final or not config.retry_on_connection_error:
                raise
            delay = _compute_delay(attempt, config, None)
            _logger.debug(
                "POST %s failed (%s), attempt %d of %d; retrying in %.2fs",
                url,
                type(exc).__name__,
                attempt + 1,
                config.attempts,
                delay,
            )
            _sleep(delay)
            continue

        if resp.status_code not in config.retryable_status_codes:
            return resp
        last = resp
        if final:
            break

        delay = _compute_delay(attempt, config, _retry_after_of(resp))
        _logger.debug(
            "POST %s answered HTTP %d, attempt %d of %d; retrying in %.2fs",
            url,
            resp.status_code,
            attempt + 1,
            config.attempts,
            delay,
        )
        _sleep(delay)

    # the loop runs at least once and only breaks after storing a response
    assert last is not None
    raise HttpTransientError(last.status_code, _body_preview(last.content), _retry_after_of(last))
