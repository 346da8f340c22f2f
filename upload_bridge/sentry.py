# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Sentry error reporting for the upload bridge.

Provides ``SentryConfig`` and ``SentryReporter``, an ``ErrorReporter`` that
sends out-of-band error events to Sentry with request context attached
(saved file path, the JSON-RPC request, the backend response, ...).

Users must initialize Sentry separately via ``sentry_sdk.init()`` (the
``serve`` CLI command does this when ``--sentry-dsn`` is given). This
module does **not** manage the DSN or SDK lifecycle.

Usage::

    import sentry_sdk
    from upload_bridge.sentry import SentryConfig, SentryReporter

    sentry_sdk.init(dsn="https://...")
    app = make_wsgi_app(store, authenticate=auth, reporter=SentryReporter())
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

import sentry_sdk

from upload_bridge.rpc._common import _current_request_id

__all__ = ["ErrorReporter", "NullReporter", "SentryConfig", "SentryReporter"]

_logger = logging.getLogger("upload_bridge.sentry")


class ErrorReporter(Protocol):
    """Receives error events for out-of-band observability.

    Implementations must not raise; reporting is fire-and-forget.
    """

    def report(self, error: BaseException, extra: Mapping[str, str] | None = None) -> None:
        """Report *error* with optional key-value context."""
        ...


class NullReporter:
    """Reporter that drops every event."""

    def report(self, error: BaseException, extra: Mapping[str, str] | None = None) -> None:
        """Discard the event."""


@dataclass(frozen=True)
class SentryConfig:
    """Configuration for Sentry error reporting.

    Attributes:
        enable_error_capture: Capture exceptions via ``sentry_sdk.capture_exception`` (default ``True``).
        record_request_context: Attach the per-event context mapping and the
            request id to the Sentry scope (default ``True``).
        custom_tags: Extra tags applied to every Sentry event.
        ignored_exceptions: Exception types to skip when reporting.
        context_name: Name of the Sentry context the extra mapping is stored under.

    """

    enable_error_capture: bool = True
    record_request_context: bool = True
    custom_tags: Mapping[str, str] = field(default_factory=dict)
    ignored_exceptions: tuple[type[BaseException], ...] = ()
    context_name: str = "upload_bridge"


class SentryReporter:
    """``ErrorReporter`` backed by ``sentry_sdk``."""

    __slots__ = ("_config",)

    def __init__(self, config: SentryConfig | None = None) -> None:
        self._config = config if config is not None else SentryConfig()

    @property
    def config(self) -> SentryConfig:
        """The active configuration."""
        return self._config

    def report(self, error: BaseException, extra: Mapping[str, str] | None = None) -> None:
        """Capture *error* in an isolated scope carrying *extra* as context.

        Failures inside the Sentry SDK are logged and swallowed.
        """
        config = self._config
        if not config.enable_error_capture or isinstance(error, config.ignored_exceptions):
            return
        try:
            with sentry_sdk.new_scope() as scope:
                if config.record_request_context:
                    context: dict[str, str] = dict(extra or {})
                    request_id = _current_request_id.get()
                    if request_id:
                        context["request_id"] = request_id
                    scope.set_context(config.context_name, context)
                for key, value in config.custom_tags.items():
                    scope.set_tag(key, value)
                sentry_sdk.capture_exception(error)
        except Exception:
            _logger.warning("Failed to report error to Sentry", exc_info=True)
