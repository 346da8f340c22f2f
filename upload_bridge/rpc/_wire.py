# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON-RPC 2.0 envelopes and their wire encoding.

Requests are decoded from the ``json_payload`` form field (or a plain JSON
body); responses and errors are always encoded as JSON-RPC objects::

    {"jsonrpc": "2.0", "result": ..., "id": 1}
    {"jsonrpc": "2.0", "error": {"code": -32700, "message": "..."}, "id": 0}

Errors are written with ``id`` set to the request id when it is known and
``0`` otherwise.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from upload_bridge.rpc._common import (
    CODE_INTERNAL,
    JSONRPC_VERSION,
    BridgeError,
    InvalidParamsError,
    InvalidRequestError,
    JsonParseError,
    SerializeError,
)

__all__ = [
    "RpcRequest",
    "RpcResponse",
    "error_to_json",
    "parse_rpc_request",
    "serialize_response",
]

RequestId = int | str | None


@dataclass
class RpcRequest:
    """A decoded JSON-RPC request.

    Attributes:
        method: Remote method name.
        params: Parameter object, or ``None`` when the request carried none.
        id: Request identifier as sent by the client.
        jsonrpc: Protocol version string.

    """

    method: str
    params: dict[str, Any] | None = None
    id: RequestId = 0
    jsonrpc: str = JSONRPC_VERSION

    def copy(self) -> RpcRequest:
        """Return a copy whose params mapping can be mutated independently."""
        return RpcRequest(
            method=self.method,
            params=dict(self.params) if self.params is not None else None,
            id=self.id,
            jsonrpc=self.jsonrpc,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation."""
        obj: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method, "id": self.id}
        if self.params is not None:
            obj["params"] = self.params
        return obj


@dataclass
class RpcResponse:
    """A JSON-RPC response as received from the backend."""

    result: Any = None
    error: dict[str, Any] | None = None
    id: RequestId = 0
    jsonrpc: str = JSONRPC_VERSION
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> RpcResponse:
        """Build from a decoded JSON object.

        Unknown top-level members are kept in ``extra`` and written back on
        serialization so the client sees the backend response unchanged.

        Raises:
            ValueError: If ``error`` is present but not an object.

        """
        error = obj.get("error")
        if error is not None and not isinstance(error, Mapping):
            raise ValueError(f"JSON-RPC error member must be an object, got {type(error).__name__}")
        known = {"jsonrpc", "result", "error", "id"}
        return cls(
            result=obj.get("result"),
            error=dict(error) if error is not None else None,
            id=obj.get("id", 0),
            jsonrpc=str(obj.get("jsonrpc", JSONRPC_VERSION)),
            extra={k: v for k, v in obj.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation."""
        obj: dict[str, Any] = {"jsonrpc": self.jsonrpc, **self.extra}
        if self.error is not None:
            obj["error"] = self.error
        else:
            obj["result"] = self.result
        obj["id"] = self.id
        return obj


def parse_rpc_request(payload: str | bytes) -> RpcRequest:
    """Decode a JSON-RPC request envelope.

    Args:
        payload: JSON text of a single request object.

    Returns:
        The decoded request.  ``params`` is copied, never shared with the
        decoded document.

    Raises:
        JsonParseError: If *payload* is not valid JSON.
        InvalidRequestError: If the document is not an object with a
            string ``method``.
        InvalidParamsError: If ``params`` is present and not an object.

    """
    try:
        obj = json.loads(payload)
    except ValueError as exc:
        raise JsonParseError(f"error parsing JSON-RPC request: {exc}") from exc

    if not isinstance(obj, dict):
        raise InvalidRequestError(f"JSON-RPC request must be an object, got {type(obj).__name__}")
    method = obj.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequestError("JSON-RPC request has no method")
    params = obj.get("params")
    if params is not None and not isinstance(params, dict):
        raise InvalidParamsError(f"params must be an object, got {type(params).__name__}")
    request_id = obj.get("id", 0)
    if not isinstance(request_id, (int, str)) and request_id is not None:
        raise InvalidRequestError(f"JSON-RPC id must be a string or number, got {type(request_id).__name__}")
    return RpcRequest(
        method=method,
        params=dict(params) if params is not None else None,
        id=request_id,
        jsonrpc=str(obj.get("jsonrpc", JSONRPC_VERSION)),
    )


def serialize_response(response: RpcResponse) -> bytes:
    """Encode a backend response for the client.

    Encoding is strict: values JSON cannot represent (including ``NaN`` and
    infinities) are rejected rather than emitted as non-standard tokens.

    Raises:
        SerializeError: If the response cannot be encoded.

    """
    try:
        return json.dumps(response.to_dict(), allow_nan=False).encode()
    except (TypeError, ValueError) as exc:
        raise SerializeError(f"error serializing response: {exc}") from exc


def error_to_json(exc: BaseException, request_id: RequestId = 0) -> bytes:
    """Encode an exception as a JSON-RPC error response.

    ``BridgeError`` subclasses keep their code, message, and data; any other
    exception becomes an internal error with ``str(exc)`` as message.
    """
    if isinstance(exc, BridgeError):
        error: dict[str, Any] = {"code": exc.code, "message": exc.message}
        if exc.data is not None:
            error["data"] = exc.data
    else:
        error = {"code": CODE_INTERNAL, "message": str(exc)}
    body = {"jsonrpc": JSONRPC_VERSION, "error": error, "id": request_id if request_id is not None else 0}
    return json.dumps(body, default=str).encode()
