# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Backend RPC caller with ordered pre-dispatch hooks.

A ``Caller`` sends one JSON-RPC request to a user's backend over HTTP.
Before the request is sent, each registered preflight hook runs in order on
a mutable ``Query``:

- returning ``None`` lets dispatch proceed (the hook may have rewritten the
  query in place);
- returning an ``RpcResponse`` short-circuits dispatch with that response;
- raising aborts the call with that exception.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from upload_bridge.rpc._common import RpcError, _current_request_id
from upload_bridge.rpc._retry import HttpRetryConfig, _body_preview, _post_with_retry
from upload_bridge.rpc._wire import RpcRequest, RpcResponse

if TYPE_CHECKING:
    from upload_bridge.cache import QueryCache

_logger = logging.getLogger("upload_bridge.rpc")

_REQUEST_ID_HEADER = "X-Request-ID"
_JSON_CONTENT_TYPE = "application/json"

PreflightHook = Callable[["Caller", "Query"], RpcResponse | None]
"""Hook run on a query before it is sent; see module docstring."""


class Query:
    """One call being prepared for dispatch.

    Holds a private copy of the client's request, so hooks can rewrite it
    without affecting the caller's object.
    """

    __slots__ = ("request",)

    def __init__(self, request: RpcRequest) -> None:
        self.request = request.copy()

    @property
    def method(self) -> str:
        """Remote method name."""
        return self.request.method

    def params_as_map(self) -> dict[str, Any]:
        """Return a copy of the params object (empty if the request has none)."""
        return dict(self.request.params) if self.request.params is not None else {}

    def cache_key(self, principal_id: int) -> str:
        """Return a cache key scoped to *principal_id*."""
        params = json.dumps(self.request.params, sort_keys=True, default=str)
        return f"{principal_id}:{self.request.method}:{params}"


class Caller:
    """Sends JSON-RPC calls to a single backend on behalf of one principal."""

    __slots__ = ("_client", "_preflight_hooks", "_retry", "_timeout", "cache", "endpoint", "principal_id")

    def __init__(
        self,
        endpoint: str,
        principal_id: int,
        *,
        cache: QueryCache | None = None,
        client: httpx.Client | None = None,
        retry: HttpRetryConfig | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Bind the caller to a backend endpoint.

        Args:
            endpoint: Backend JSON-RPC URL.
            principal_id: Id of the user the calls are made for.
            cache: Optional response cache; only its cacheable methods use it.
            client: HTTP client to send with.  When ``None``, a client is
                created per call and closed afterwards.
            retry: Retry policy for transient HTTP failures, or ``None``.
            timeout: Request timeout in seconds for the per-call client.

        """
        self.endpoint = endpoint
        self.principal_id = principal_id
        self.cache = cache
        self._client = client
        self._retry = retry
        self._timeout = timeout
        self._preflight_hooks: list[PreflightHook] = []

    def add_preflight_hook(self, hook: PreflightHook) -> None:
        """Append *hook* to the hooks run before each call."""
        self._preflight_hooks.append(hook)

    @property
    def preflight_hooks(self) -> tuple[PreflightHook, ...]:
        """Registered hooks, in run order."""
        return tuple(self._preflight_hooks)

    def call(self, request: RpcRequest) -> RpcResponse:
        """Run preflight hooks, then send *request* to the backend.

        Returns:
            The backend response, a hook's synthetic response, or a cached
            response.

        Raises:
            RpcError: If the backend is unreachable, answers with a
                non-JSON-RPC body, or reports a JSON-RPC error.

        """
        query = Query(request)
        for hook in self._preflight_hooks:
            early = hook(self, query)
            if early is not None:
                _logger.debug("Preflight hook answered %s without dispatch", query.method)
                return early

        use_cache = self.cache is not None and self.cache.is_cacheable(query.method)
        if use_cache:
            assert self.cache is not None
            key = query.cache_key(self.principal_id)
            cached = self.cache.get(key)
            if cached is not None:
                _logger.debug("Cache hit for %s", query.method, extra={"user_id": self.principal_id})
                return cached

        response = self._send(query)
        if response.error is not None:
            raise RpcError.from_error_object(response.error, response)

        if use_cache:
            assert self.cache is not None
            self.cache.set(key, response)
        return response

    def _send(self, query: Query) -> RpcResponse:
        """POST the query and decode the JSON-RPC response."""
        content = json.dumps(query.request.to_dict(), default=str).encode()
        headers = {"Content-Type": _JSON_CONTENT_TYPE}
        request_id = _current_request_id.get()
        if request_id:
            headers[_REQUEST_ID_HEADER] = request_id

        _logger.debug(
            "Calling %s on %s",
            query.method,
            self.endpoint,
            extra={"user_id": self.principal_id, "method": query.method},
        )
        client = self._client if self._client is not None else httpx.Client(timeout=self._timeout)
        try:
            resp = _post_with_retry(client, self.endpoint, content=content, headers=headers, config=self._retry)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RpcError(f"error calling backend: {exc}") from exc
        finally:
            if self._client is None:
                client.close()

        if resp.status_code != httpx.codes.OK:
            raise RpcError(f"backend returned HTTP {resp.status_code}: {_body_preview(resp.content)!r}")
        try:
            obj = resp.json()
        except ValueError as exc:
            raise RpcError(f"backend returned invalid JSON: {_body_preview(resp.content)!r}") from exc
        if not isinstance(obj, dict):
            raise RpcError(f"backend returned a non-object JSON-RPC response: {type(obj).__name__}")
        try:
            return RpcResponse.from_dict(obj)
        except ValueError as exc:
            raise RpcError(str(exc)) from exc
