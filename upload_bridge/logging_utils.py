# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Logging helpers: JSON formatting and context-bound adapters.

Provides :class:`BridgeJsonFormatter`, a :class:`logging.Formatter` subclass
that serializes log records as single-line JSON objects.  All ``extra``
fields attached to a record (via ``LoggerAdapter`` or per-call ``extra``)
are automatically included.

``configure_logging`` installs it (or a plain text formatter) on the
``upload_bridge`` logger hierarchy; the ``serve`` command calls it at startup.
"""

from __future__ import annotations

import json
import logging
from collections.abc import MutableMapping
from typing import Any

from upload_bridge.rpc._common import _current_request_id

__all__ = ["BridgeJsonFormatter", "configure_logging"]

# Build the set of attribute names that every LogRecord has by default.
# Anything *not* in this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_TRAILER_KEYS: frozenset[str] = frozenset({"exception", "stack_info"})


class BridgeJsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Every line starts with the same keys: ``timestamp``, ``level``,
    ``logger``, ``message``, ``user_id`` and ``request_id``.  The two
    correlation keys are ``null`` when unknown; ``request_id`` falls back to
    the id of the request being served on this thread.  Remaining ``extra``
    attributes follow, and values json cannot encode are written with
    ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Return *record* as a single-line JSON string."""
        fields = record.__dict__
        request_id = fields.get("request_id") or _current_request_id.get() or None
        line: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "user_id": fields.get("user_id"),
            "request_id": request_id,
        }
        for key, value in fields.items():
            if key not in _DEFAULT_RECORD_ATTRS and key not in line and key not in _TRAILER_KEYS:
                line[key] = value
        if record.exc_info and record.exc_info[1]:
            line["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            line["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(line, default=str)


class _ContextLoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """LoggerAdapter that preserves bound extra fields.

    User-supplied ``extra`` in individual log calls is merged, but bound
    fields (``user_id``, ``request_id``) take precedence on key conflicts.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        """Merge user extra with bound extra, bound wins on conflict."""
        user_extra = kwargs.get("extra", {})
        kwargs["extra"] = {**user_extra, **(self.extra or {})}
        return msg, kwargs


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a stderr handler on the ``upload_bridge`` logger.

    Args:
        level: Level name for the ``upload_bridge`` logger hierarchy.
        fmt: ``"json"`` for :class:`BridgeJsonFormatter`, anything else for
            plain text.

    """
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(BridgeJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("upload_bridge")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False
