# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Upload-to-RPC bridge handler.

``PublishHandler`` takes a multipart upload, saves the file to the user's
scratch directory, and forwards the accompanying JSON-RPC request to the
user's backend with the saved path injected as the ``file_path`` param:

1. resolve the principal (set on the request by the auth middleware);
2. save the upload;
3. parse the ``json_payload`` envelope;
4. dispatch through a ``Caller`` built by :func:`build_call`;
5. serialize the backend response.

The saved file is removed once the request finishes, whichever step it
stopped at.  Every outcome is written as a JSON-RPC body with HTTP 200;
clients tell success from failure by the body alone.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import falcon
import httpx

from upload_bridge.logging_utils import _ContextLoggerAdapter
from upload_bridge.rpc import (
    AuthRequiredError,
    BridgeError,
    Caller,
    ForbiddenError,
    HttpRetryConfig,
    InternalError,
    InvalidRequestError,
    Principal,
    Query,
    RpcError,
    RpcRequest,
    SerializeError,
    UploadError,
    _current_request_id,
    _emit_access_log,
    error_to_json,
    parse_rpc_request,
    serialize_response,
)
from upload_bridge.scratch import ScratchStore
from upload_bridge.sentry import ErrorReporter, NullReporter

from ._common import _JSON_CONTENT_TYPE, FILE_PATH_PARAM, JSON_RPC_FIELD_NAME
from ._upload import _is_multipart, _read_upload_form, can_handle, save_upload

if TYPE_CHECKING:
    from upload_bridge.cache import QueryCache

_logger = logging.getLogger("upload_bridge.publish")

_Logger = logging.Logger | logging.LoggerAdapter[logging.Logger]


def build_call(
    sdk_address: str,
    file_path: str | os.PathLike[str],
    principal_id: int,
    cache: QueryCache | None,
    *,
    client: httpx.Client | None = None,
    retry: HttpRetryConfig | None = None,
) -> Caller:
    """Build a caller whose queries carry *file_path* as the ``file_path`` param.

    The injected value always wins over a client-supplied ``file_path``.
    """
    caller = Caller(sdk_address, principal_id, cache=cache, client=client, retry=retry)
    path = str(file_path)

    def _inject_file_path(_caller: Caller, query: Query) -> None:
        params = query.params_as_map()
        params[FILE_PATH_PARAM] = path
        query.request.params = params

    caller.add_preflight_hook(_inject_file_path)
    return caller


def _principal_from_request(req: falcon.Request) -> Principal:
    """Return the principal resolved by the auth middleware.

    Raises:
        AuthRequiredError: If no credentials were presented (or no
            authenticator is configured).
        ForbiddenError: If the credentials were rejected.

    """
    error: Exception | None = getattr(req.context, "auth_error", None)
    if isinstance(error, PermissionError):
        raise ForbiddenError(str(error)) from error
    if error is not None:
        raise AuthRequiredError(str(error)) from error
    principal: Principal | None = getattr(req.context, "principal", None)
    if principal is None:
        raise AuthRequiredError("authentication required")
    return principal


def _cache_from_request(req: falcon.Request) -> QueryCache | None:
    return getattr(req.context, "query_cache", None)


@dataclass
class _AccessRecord:
    """Fields collected while handling one request, for the access log."""

    user_id: int | None = None
    method: str = ""
    status: Literal["ok", "error"] = "ok"
    error_type: str = ""

    def fail(self, exc: BaseException) -> None:
        self.status = "error"
        self.error_type = type(exc).__name__


class _JsonRpcHandler(abc.ABC):
    """Shared plumbing for handlers that answer with a JSON-RPC body."""

    __slots__ = ("_client", "_logger", "_reporter", "_retry")

    route = "proxy"

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        retry: HttpRetryConfig | None = None,
        reporter: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._retry = retry
        self._reporter: ErrorReporter = reporter if reporter is not None else NullReporter()
        self._logger = logger if logger is not None else _logger

    def handle(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Process the request and write the JSON-RPC body with HTTP 200."""
        record = _AccessRecord()
        start = time.monotonic()
        try:
            body = self._process(req, record)
        except Exception as exc:
            self._logger.exception(
                "unexpected error handling %s request: %s",
                self.route,
                exc,
                extra={"user_id": record.user_id, "error_type": type(exc).__name__},
            )
            self._reporter.report(exc)
            record.fail(exc)
            body = error_to_json(InternalError("internal server error"))
        finally:
            _emit_access_log(
                self.route,
                record.method,
                record.user_id,
                req.remote_addr or "",
                (time.monotonic() - start) * 1000,
                record.status,
                record.error_type,
            )
        resp.status = falcon.HTTP_200
        resp.content_type = _JSON_CONTENT_TYPE
        resp.data = body

    @abc.abstractmethod
    def _process(self, req: falcon.Request, record: _AccessRecord) -> bytes:
        """Run the request and return the encoded JSON-RPC response."""

    def _authenticate(self, req: falcon.Request, record: _AccessRecord) -> tuple[Principal, str]:
        """Resolve the principal and its backend address.

        Raises:
            BridgeError: Auth failure or missing backend address; already
                logged and recorded.

        """
        try:
            principal = _principal_from_request(req)
        except BridgeError as exc:
            record.fail(exc)
            raise
        record.user_id = principal.id
        try:
            sdk_address = principal.require_sdk_address()
        except InternalError as exc:
            self._logger.error(
                "user %d does not have sdk address assigned", principal.id, extra={"user_id": principal.id}
            )
            record.fail(exc)
            raise
        return principal, sdk_address

    def _bind_logger(self, principal: Principal) -> _Logger:
        extra: dict[str, object] = {"user_id": principal.id}
        request_id = _current_request_id.get()
        if request_id:
            extra["request_id"] = request_id
        return _ContextLoggerAdapter(self._logger, extra)

    def _call(
        self, caller: Caller, rpc_req: RpcRequest, log: _Logger, record: _AccessRecord
    ) -> bytes:
        """Dispatch and serialize, translating failures to JSON-RPC errors."""
        try:
            rpc_res = caller.call(rpc_req)
        except RpcError as exc:
            self._reporter.report(exc, {"request": repr(rpc_req), "response": repr(exc.response)})
            log.error(
                "error calling backend: %s, request: %r",
                exc,
                rpc_req,
                extra={"method": rpc_req.method, "error_type": type(exc).__name__},
            )
            record.fail(exc)
            return error_to_json(exc, rpc_req.id)

        try:
            return serialize_response(rpc_res)
        except SerializeError as exc:
            self._reporter.report(exc)
            log.error("error marshaling response: %s", exc, extra={"method": rpc_req.method})
            record.fail(exc)
            return error_to_json(exc, rpc_req.id)


class PublishHandler(_JsonRpcHandler):
    """Bridges multipart uploads to the user's JSON-RPC backend."""

    __slots__ = ("_store",)

    route = "publish"

    def __init__(
        self,
        store: ScratchStore,
        *,
        client: httpx.Client | None = None,
        retry: HttpRetryConfig | None = None,
        reporter: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Create the handler.

        Args:
            store: Where uploads are saved while their call is in flight.
            client: HTTP client for backend calls (a fresh one per call
                when ``None``).
            retry: Retry policy for transient backend failures.
            reporter: Receives errors for out-of-band reporting.
            logger: Logger for handler messages; built once at startup and
                shared by every request.

        """
        super().__init__(client=client, retry=retry, reporter=reporter, logger=logger)
        self._store = store

    @staticmethod
    def can_handle(req: falcon.Request) -> bool:
        """Return whether *req* is an upload this handler accepts."""
        return can_handle(req)

    def _process(self, req: falcon.Request, record: _AccessRecord) -> bytes:
        try:
            principal, sdk_address = self._authenticate(req, record)
        except BridgeError as exc:
            return error_to_json(exc)

        log = self._bind_logger(principal)
        try:
            path = save_upload(req, principal.id, self._store, logger=log)
        except (UploadError, OSError) as exc:
            log.error("error saving upload: %s", exc, extra={"error_type": type(exc).__name__})
            self._reporter.report(exc)
            error = exc if isinstance(exc, UploadError) else UploadError(str(exc))
            record.fail(error)
            return error_to_json(error)

        with self._removing(path, log):
            try:
                rpc_req = parse_rpc_request(_read_upload_form(req).value(JSON_RPC_FIELD_NAME))
            except BridgeError as exc:
                record.fail(exc)
                return error_to_json(exc)
            record.method = rpc_req.method

            caller = build_call(
                sdk_address,
                path,
                principal.id,
                _cache_from_request(req),
                client=self._client,
                retry=self._retry,
            )
            return self._call(caller, rpc_req, log, record)

    @contextlib.contextmanager
    def _removing(self, path: Path, log: _Logger) -> Iterator[None]:
        """Delete *path* on exit; deletion failures are only reported."""
        try:
            yield
        finally:
            try:
                os.remove(path)
            except OSError as exc:
                log.error("error removing uploaded file %s: %s", path, exc, extra={"file_path": str(path)})
                self._reporter.report(exc, {"file_path": str(path)})


class ProxyHandler(_JsonRpcHandler):
    """Forwards a plain JSON-RPC request body to the user's backend."""

    __slots__ = ()

    def _process(self, req: falcon.Request, record: _AccessRecord) -> bytes:
        try:
            principal, sdk_address = self._authenticate(req, record)
        except BridgeError as exc:
            return error_to_json(exc)

        log = self._bind_logger(principal)
        try:
            if _is_multipart(req):
                raise InvalidRequestError(
                    "multipart requests must carry a 'file' part and a non-empty 'json_payload' field"
                )
            rpc_req = parse_rpc_request(req.bounded_stream.read())
        except BridgeError as exc:
            record.fail(exc)
            return error_to_json(exc)
        record.method = rpc_req.method

        caller = Caller(
            sdk_address,
            principal.id,
            cache=_cache_from_request(req),
            client=self._client,
            retry=self._retry,
        )
        return self._call(caller, rpc_req, log, record)
