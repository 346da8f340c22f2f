# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for upload-bridge tests."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from upload_bridge.auth import TokenAuthenticator
from upload_bridge.http import _UploadTestClient, make_test_client
from upload_bridge.rpc import Principal
from upload_bridge.scratch import ScratchStore

SDK_ADDRESS = "http://sdk.test:5279/"

USER = Principal(id=42, sdk_address=SDK_ADDRESS)
"""Principal with a backend assigned (token ``tok-42``)."""

USER_WITHOUT_SDK = Principal(id=7, sdk_address=None)
"""Principal with no backend assigned (token ``tok-7``)."""

TOKENS = {"tok-42": USER, "tok-7": USER_WITHOUT_SDK}


class FakeBackend:
    """JSON-RPC backend served through ``httpx.MockTransport``.

    Records every decoded request body and its headers.  Answers with
    ``result`` by default, with ``error`` when set, or with a bare
    ``status_code`` body when it is not 200.  ``on_request`` runs before the
    answer is built, while the upload is still on disk.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self.result: Any = {"ok": True}
        self.error: dict[str, Any] | None = None
        self.status_code = 200
        self.raw_body: bytes | None = None
        self.on_request: Callable[[dict[str, Any]], None] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        """Handle one POST from the bridge."""
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)
        if self.on_request is not None:
            self.on_request(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, content=b"<html>Bad Gateway</html>")
        if self.raw_body is not None:
            return httpx.Response(200, content=self.raw_body)
        if self.error is not None:
            return httpx.Response(200, json={"jsonrpc": "2.0", "error": self.error, "id": body.get("id")})
        return httpx.Response(200, json={"jsonrpc": "2.0", "result": self.result, "id": body.get("id")})

    @property
    def last_params(self) -> dict[str, Any]:
        """Params of the most recent request."""
        params: dict[str, Any] = self.requests[-1].get("params") or {}
        return params


@pytest.fixture
def upload_root(tmp_path: Path) -> Path:
    """Root directory for scratch files."""
    return tmp_path / "uploads"


@pytest.fixture
def store(upload_root: Path) -> ScratchStore:
    """Scratch store rooted in a per-test temp directory."""
    return ScratchStore(upload_root)


@pytest.fixture
def backend() -> FakeBackend:
    """Recording JSON-RPC backend."""
    return FakeBackend()


@pytest.fixture
def backend_client(backend: FakeBackend) -> Iterator[httpx.Client]:
    """httpx client whose requests are answered by ``backend``."""
    client = httpx.Client(transport=httpx.MockTransport(backend))
    yield client
    client.close()


@pytest.fixture
def bridge(store: ScratchStore, backend_client: httpx.Client) -> _UploadTestClient:
    """In-process bridge authenticated as principal 42."""
    return make_test_client(
        store,
        authenticate=TokenAuthenticator(TOKENS),
        client=backend_client,
        default_headers={"Authorization": "Bearer tok-42"},
    )


def scratch_files(root: Path) -> list[Path]:
    """Return every file below *root* (empty if it does not exist)."""
    if not root.exists():
        return []
    return [p for p in root.rglob("*") if p.is_file()]


@pytest.fixture
def restore_bridge_logger() -> Iterator[logging.Logger]:
    """Undo ``configure_logging`` changes to the ``upload_bridge`` logger after the test."""
    logger = logging.getLogger("upload_bridge")
    saved = (logger.handlers[:], logger.level, logger.propagate)
    yield logger
    logger.handlers[:], logger.level, logger.propagate = saved
