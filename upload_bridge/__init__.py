# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bridge multipart file uploads to per-user JSON-RPC backends."""

from upload_bridge.auth import TokenAuthenticator, load_tokens
from upload_bridge.cache import QueryCache
from upload_bridge.http import (
    FILE_FIELD_NAME,
    FILE_PATH_PARAM,
    JSON_RPC_FIELD_NAME,
    PublishHandler,
    build_call,
    can_handle,
    make_wsgi_app,
    save_upload,
)
from upload_bridge.rpc import (
    BridgeError,
    Caller,
    HttpRetryConfig,
    HttpTransientError,
    Principal,
    Query,
    RpcError,
    RpcRequest,
    RpcResponse,
)
from upload_bridge.scratch import ScratchStore
from upload_bridge.sentry import ErrorReporter, SentryConfig, SentryReporter

__all__ = [
    "FILE_FIELD_NAME",
    "FILE_PATH_PARAM",
    "JSON_RPC_FIELD_NAME",
    "BridgeError",
    "Caller",
    "ErrorReporter",
    "HttpRetryConfig",
    "HttpTransientError",
    "Principal",
    "PublishHandler",
    "Query",
    "QueryCache",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    "ScratchStore",
    "SentryConfig",
    "SentryReporter",
    "TokenAuthenticator",
    "build_call",
    "can_handle",
    "load_tokens",
    "make_wsgi_app",
    "save_upload",
]
