# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Synchronous test client for the HTTP layer.

Provides ``_UploadTestClient`` and ``make_test_client`` which use
``falcon.testing.TestClient`` internally, so no real HTTP server is needed.
Multipart bodies are encoded with httpx so they match what a real client
sends.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Iterable, Mapping

import falcon
import falcon.testing
import httpx

from upload_bridge.cache import QueryCache
from upload_bridge.rpc import HttpRetryConfig, Principal
from upload_bridge.scratch import ScratchStore
from upload_bridge.sentry import ErrorReporter

from ._common import FILE_FIELD_NAME, JSON_RPC_FIELD_NAME
from ._server import make_wsgi_app


def encode_multipart(
    files: Mapping[str, tuple[str, bytes]] | None = None,
    data: Mapping[str, str] | None = None,
) -> tuple[bytes, str]:
    """Encode a ``multipart/form-data`` body.

    Returns:
        The body bytes and the ``Content-Type`` header value (with boundary).

    """
    request = httpx.Request("POST", "http://testserver/", files=dict(files or {}), data=dict(data or {}))
    return request.read(), request.headers["Content-Type"]


class _UploadTestClient:
    """Sync HTTP client that calls a Falcon WSGI app directly via falcon.testing.TestClient."""

    __slots__ = ("_client", "_default_headers", "path")

    def __init__(
        self,
        app: falcon.App[falcon.Request, falcon.Response],
        path: str = "/api/v1/proxy",
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._client = falcon.testing.TestClient(app)
        self._default_headers: dict[str, str] = default_headers or {}
        self.path = path

    def upload(
        self,
        content: bytes | None,
        json_payload: str | Mapping[str, object] | None,
        *,
        filename: str = "upload.bin",
        headers: dict[str, str] | None = None,
    ) -> falcon.testing.Result:
        """POST a multipart upload.

        ``None`` for *content* or *json_payload* omits that field; a mapping
        payload is JSON-encoded.
        """
        files = {FILE_FIELD_NAME: (filename, content)} if content is not None else {}
        data: dict[str, str] = {}
        if json_payload is not None:
            data[JSON_RPC_FIELD_NAME] = json_payload if isinstance(json_payload, str) else json.dumps(json_payload)
        # httpx only emits multipart when there are files; force it for field-only forms
        if not files:
            body, content_type = _encode_fields_only(data)
        else:
            body, content_type = encode_multipart(files, data)
        return self.post(body, content_type=content_type, headers=headers)

    def post(
        self,
        body: bytes,
        *,
        content_type: str,
        headers: dict[str, str] | None = None,
    ) -> falcon.testing.Result:
        """POST a raw body."""
        merged = {**self._default_headers, **(headers or {}), "Content-Type": content_type}
        return self._client.simulate_post(self.path, body=body, headers=merged)

    def close(self) -> None:
        """Close the client (no-op for test client)."""


def _encode_fields_only(data: Mapping[str, str]) -> tuple[bytes, str]:
    boundary = os.urandom(8).hex()
    chunks = [
        f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n'.encode()
        for name, value in data.items()
    ]
    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


def make_test_client(
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
    default_headers: dict[str, str] | None = None,
) -> _UploadTestClient:
    """Create a synchronous test client for the bridge.

    Uses ``falcon.testing.TestClient`` internally, so no real HTTP server is needed.
    All keyword arguments except *default_headers* are passed to
    ``make_wsgi_app``.
    """
    app = make_wsgi_app(
        store,
        authenticate=authenticate,
        prefix=prefix,
        cache=cache,
        client=client,
        retry=retry,
        reporter=reporter,
        logger=logger,
        cors_origins=cors_origins,
    )
    return _UploadTestClient(app, path=f"{prefix}/proxy", default_headers=default_headers)
