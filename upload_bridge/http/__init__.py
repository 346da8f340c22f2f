# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP layer for the upload bridge using Falcon (server) and httpx (backend calls).

Provides ``make_wsgi_app`` to expose the bridge as a Falcon WSGI
application.

HTTP Wire Protocol
------------------
``POST {prefix}/proxy`` (default prefix ``/api/v1``):

- ``multipart/form-data`` with a ``file`` part and a ``json_payload`` field
  holding a JSON-RPC request: the file is saved, its path is injected as
  the ``file_path`` param, and the request is forwarded to the caller's
  backend.
- ``application/json`` JSON-RPC request: forwarded unchanged.

Responses are always JSON-RPC objects written with HTTP 200; errors are in
the body, not the status line.
"""

from upload_bridge.http._common import (
    FILE_FIELD_NAME,
    FILE_PATH_PARAM,
    JSON_RPC_FIELD_NAME,
)
from upload_bridge.http._publish import ProxyHandler, PublishHandler, build_call
from upload_bridge.http._server import make_wsgi_app
from upload_bridge.http._testing import _UploadTestClient, encode_multipart, make_test_client
from upload_bridge.http._upload import can_handle, save_upload

__all__ = [
    "FILE_FIELD_NAME",
    "FILE_PATH_PARAM",
    "JSON_RPC_FIELD_NAME",
    "ProxyHandler",
    "PublishHandler",
    "_UploadTestClient",
    "build_call",
    "can_handle",
    "encode_multipart",
    "make_test_client",
    "make_wsgi_app",
    "save_upload",
]
