# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared constants for the HTTP layer."""

from __future__ import annotations

from typing import Final

# POST field holding the uploaded file
FILE_FIELD_NAME: Final = "file"
# POST field holding the JSON-RPC request that accompanies the file
JSON_RPC_FIELD_NAME: Final = "json_payload"
# params key the saved file's path is written to before dispatch
FILE_PATH_PARAM: Final = "file_path"

_JSON_CONTENT_TYPE = "application/json"
_MULTIPART_CONTENT_TYPE = "multipart/form-data"
_REQUEST_ID_HEADER = "X-Request-ID"

# Uploaded file parts stay in memory up to this size, then spill to disk
_SPOOL_MAX_BYTES = 1 << 20
_COPY_BUFSIZE = 64 * 1024
