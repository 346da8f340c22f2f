# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Constants, errors, principals, and request correlation for the bridge."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Literal

if TYPE_CHECKING:
    from upload_bridge.rpc._wire import RpcResponse

_logger = logging.getLogger("upload_bridge.rpc")
_access_logger = logging.getLogger("upload_bridge.access")

JSONRPC_VERSION: Final = "2.0"

# ---------------------------------------------------------------------------
# JSON-RPC error codes
# ---------------------------------------------------------------------------

CODE_INTERNAL: Final = -32080  # general server error
CODE_SDK: Final = -32603  # otherwise-unspecified errors from the backend
CODE_AUTH_REQUIRED: Final = -32084  # credentials required but not provided
CODE_FORBIDDEN: Final = -32085  # credentials provided but not recognized
CODE_JSON_PARSE: Final = -32700
CODE_INVALID_REQUEST: Final = -32600
CODE_INVALID_PARAMS: Final = -32602


# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Principal:
    """The authenticated user executing a request.

    Attributes:
        id: Numeric user identifier; also names the user's scratch directory.
        sdk_address: URL of the JSON-RPC backend assigned to the user, or
            ``None`` when no backend has been assigned yet.

    """

    id: int
    sdk_address: str | None = None

    def require_sdk_address(self) -> str:
        """Return the backend address.

        Raises:
            InternalError: If the principal has no backend assigned.

        """
        if not self.sdk_address:
            raise InternalError("user does not have sdk address assigned")
        return self.sdk_address


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """Base class for errors that are written to the client as JSON-RPC errors.

    Subclasses pin the JSON-RPC ``code``; ``data`` is optional structured
    detail passed through to the wire.
    """

    code: int = CODE_INTERNAL

    def __init__(self, message: str, *, data: object = None) -> None:
        """Initialize with a client-facing message and optional data."""
        self.message = message
        self.data = data
        super().__init__(message)


class InternalError(BridgeError):
    """Generic server-side failure."""


class AuthRequiredError(BridgeError):
    """No credentials were supplied."""

    code = CODE_AUTH_REQUIRED


class ForbiddenError(BridgeError):
    """Credentials were supplied but not recognized."""

    code = CODE_FORBIDDEN


class JsonParseError(BridgeError):
    """The JSON-RPC envelope is not valid JSON."""

    code = CODE_JSON_PARSE


class InvalidRequestError(BridgeError):
    """The envelope is valid JSON but not a JSON-RPC request."""

    code = CODE_INVALID_REQUEST


class InvalidParamsError(BridgeError):
    """The request's ``params`` member is not an object."""

    code = CODE_INVALID_PARAMS


class UploadError(BridgeError):
    """The uploaded file could not be read or saved."""


class MissingFileError(UploadError):
    """The request has no file part under the upload field name."""


class SerializeError(BridgeError):
    """The backend response could not be encoded for the client."""


class RpcError(BridgeError):
    """Raised when the backend call fails.

    Carries the remote JSON-RPC error code when the backend reported one,
    and the raw response (if any) for error reporting context.
    """

    code = CODE_SDK

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: object = None,
        response: RpcResponse | None = None,
    ) -> None:
        """Initialize with the error message and optional remote details."""
        super().__init__(message, data=data)
        if code is not None:
            self.code = code
        self.response = response

    @classmethod
    def from_error_object(cls, error: Mapping[str, Any], response: RpcResponse | None = None) -> RpcError:
        """Build from a JSON-RPC ``error`` member."""
        code = error.get("code")
        return cls(
            str(error.get("message", "")),
            code=code if isinstance(code, int) else None,
            data=error.get("data"),
            response=response,
        )


# ---------------------------------------------------------------------------
# Per-request correlation ID
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a 16-char hex request ID for correlation."""
    return uuid.uuid4().hex[:16]


_current_request_id: ContextVar[str] = ContextVar("upload_bridge_request_id", default="")


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------


def _emit_access_log(
    route: str,
    method_name: str,
    user_id: int | None,
    remote_addr: str,
    duration_ms: float,
    status: Literal["ok", "error"],
    error_type: str = "",
) -> None:
    """Emit a structured access log record for a completed bridge request."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    try:
        extra: dict[str, object] = {
            "route": route,
            "method": method_name,
            "user_id": user_id if user_id is not None else "",
            "remote_addr": remote_addr,
            "duration_ms": round(duration_ms, 2),
            "status": status,
            "error_type": error_type,
        }
        request_id = _current_request_id.get()
        if request_id:
            extra["request_id"] = request_id
        _access_logger.info("%s %s %s", route, method_name or "-", status, extra=extra)
    except Exception:
        _logger.debug("Access log emission failed", exc_info=True)
