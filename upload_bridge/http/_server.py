# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP server implementation using Falcon/WSGI.

Provides ``make_wsgi_app`` to expose the upload bridge as a Falcon WSGI
application.  All server-side Falcon resources, middleware, and the app
factory live here.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from typing import Any

import falcon
import httpx

from upload_bridge.cache import QueryCache
from upload_bridge.rpc import HttpRetryConfig, Principal, _current_request_id, _generate_request_id
from upload_bridge.scratch import ScratchStore
from upload_bridge.sentry import ErrorReporter

from ._common import _REQUEST_ID_HEADER
from ._publish import ProxyHandler, PublishHandler
from ._upload import _UploadForm

_logger = logging.getLogger("upload_bridge.http")


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class _ProxyResource:
    """Falcon resource for ``POST {prefix}/proxy``.

    Uploads accepted by ``PublishHandler.can_handle`` go to the bridge;
    everything else falls through to the plain JSON-RPC proxy.
    """

    __slots__ = ("_proxy", "_publish")

    def __init__(self, publish: PublishHandler, proxy: ProxyHandler) -> None:
        self._publish = publish
        self._proxy = proxy

    def on_post(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Route to the upload bridge or the JSON-RPC proxy."""
        if self._publish.can_handle(req):
            self._publish.handle(req, resp)
        else:
            self._proxy.handle(req, resp)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class _RequestScopeMiddleware:
    """Per-request setup and teardown shared by every route.

    On the way in, binds the correlation id (the client's ``X-Request-ID``
    or a fresh 16-char hex id) to ``req.context.request_id`` and the
    ``_current_request_id`` contextvar.  On the way out, echoes the id as a
    response header, restores the contextvar, and closes any multipart form
    the handlers parsed so spooled upload data is released.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Bind the request id."""
        req.context.request_id = req.get_header(_REQUEST_ID_HEADER) or _generate_request_id()
        req.context.request_id_token = _current_request_id.set(req.context.request_id)

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Echo the request id, unbind it, and release the upload form."""
        form: _UploadForm | None = getattr(req.context, "upload_form", None)
        if form is not None:
            form.close()
        if "request_id" in req.context:
            resp.set_header(_REQUEST_ID_HEADER, req.context.request_id)
        if "request_id_token" in req.context:
            _current_request_id.reset(req.context.request_id_token)


class _AuthMiddleware:
    """Resolves the caller's :class:`Principal` before the resource runs.

    The result lands on ``req.context.principal``.  Credential problems
    (``ValueError`` for missing or malformed, ``PermissionError`` for
    unknown) are parked on ``req.context.auth_error`` instead of raised:
    the handlers answer them as JSON-RPC errors with HTTP 200.  Anything
    else the callback raises is a bug and surfaces as a 500.
    """

    __slots__ = ("_authenticate",)

    def __init__(self, authenticate: Callable[[falcon.Request], Principal]) -> None:
        self._authenticate = authenticate

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Store the principal, or the credential error."""
        try:
            req.context.principal = self._authenticate(req)
        except (ValueError, PermissionError) as exc:
            remote = req.remote_addr or ""
            _logger.warning(
                "Auth failure from %s: %s",
                remote,
                exc,
                extra={"remote_addr": remote, "error_type": type(exc).__name__, "auth_error": str(exc)},
            )
            req.context.auth_error = exc


class _QueryCacheMiddleware:
    """Falcon middleware that attaches the shared query cache to each request."""

    __slots__ = ("_cache",)

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Expose the cache as ``req.context.query_cache``."""
        req.context.query_cache = self._cache


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def make_wsgi_app(
    store: ScratchStore | str | os.PathLike[str],
    *,
    authenticate: Callable[[falcon.Request], Principal] | None = None,
    prefix: str = "/api/v1",
    cache: QueryCache | None = None,
    client: httpx.Client | None = None,
    retry: HttpRetryConfig | None = None,
    reporter: ErrorReporter | None = None,
    logger: logging.Logger | None = None,
    cors_origins: str | Iterable[str] | None = None,
) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that bridges uploads to JSON-RPC backends.

    Args:
        store: Scratch store for uploads, or the root directory to create
            one in.
        authenticate: Callback that resolves a :class:`Principal` from a
            Falcon ``Request``.  It should raise ``ValueError`` (bad or
            missing credentials) or ``PermissionError`` (unknown
            credentials).  When ``None``, every request is answered with
            an authentication-required error.
        prefix: URL prefix; the endpoint is ``POST {prefix}/proxy``.
        cache: Optional response cache shared by all requests.
        client: HTTP client for backend calls.  When ``None``, each backend
            call uses a short-lived client.
        retry: Retry policy for transient backend failures (``None``
            disables retry).
        reporter: Error reporter (e.g. ``SentryReporter``); errors are only
            logged when ``None``.
        logger: Logger for the handlers, shared by every request.
        cors_origins: Origins browsers may call from (``"*"``, one origin, or
            several).  No CORS headers are sent when omitted.

    Returns:
        A Falcon application serving the proxy endpoint.

    """
    if not isinstance(store, ScratchStore):
        store = ScratchStore(store)

    publish = PublishHandler(store, client=client, retry=retry, reporter=reporter, logger=logger)
    proxy = ProxyHandler(client=client, retry=retry, reporter=reporter, logger=logger)

    middleware: list[Any] = [_RequestScopeMiddleware()]
    if cors_origins is not None:
        middleware.append(falcon.CORSMiddleware(allow_origins=cors_origins, expose_headers=[_REQUEST_ID_HEADER]))
    if authenticate is not None:
        middleware.append(_AuthMiddleware(authenticate))
    if cache is not None:
        middleware.append(_QueryCacheMiddleware(cache))

    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(middleware=middleware)
    app.add_route(f"{prefix}/proxy", _ProxyResource(publish, proxy))

    _logger.info(
        "Upload bridge ready at %s/proxy (uploads in %s, auth %s, cache %s)",
        prefix,
        store.root,
        "on" if authenticate is not None else "off",
        "on" if cache is not None else "off",
        extra={
            "prefix": prefix,
            "upload_path": str(store.root),
            "auth_enabled": authenticate is not None,
            "cache_enabled": cache is not None,
        },
    )

    return app
