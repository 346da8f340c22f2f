# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON-RPC side of the bridge: envelopes, errors, and the backend caller."""

from upload_bridge.rpc._client import Caller, PreflightHook, Query
from upload_bridge.rpc._common import (
    CODE_AUTH_REQUIRED,
    CODE_FORBIDDEN,
    CODE_INTERNAL,
    CODE_INVALID_PARAMS,
    CODE_INVALID_REQUEST,
    CODE_JSON_PARSE,
    CODE_SDK,
    AuthRequiredError,
    BridgeError,
    ForbiddenError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    JsonParseError,
    MissingFileError,
    Principal,
    RpcError,
    SerializeError,
    UploadError,
    _access_logger,
    _current_request_id,
    _emit_access_log,
    _generate_request_id,
)
from upload_bridge.rpc._retry import HttpRetryConfig, HttpTransientError
from upload_bridge.rpc._wire import (
    RpcRequest,
    RpcResponse,
    error_to_json,
    parse_rpc_request,
    serialize_response,
)

__all__ = [
    "CODE_AUTH_REQUIRED",
    "CODE_FORBIDDEN",
    "CODE_INTERNAL",
    "CODE_INVALID_PARAMS",
    "CODE_INVALID_REQUEST",
    "CODE_JSON_PARSE",
    "CODE_SDK",
    "AuthRequiredError",
    "BridgeError",
    "Caller",
    "ForbiddenError",
    "HttpRetryConfig",
    "HttpTransientError",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "JsonParseError",
    "MissingFileError",
    "PreflightHook",
    "Principal",
    "Query",
    "RpcError",
    "RpcRequest",
    "RpcResponse",
    "SerializeError",
    "UploadError",
    "_access_logger",
    "_current_request_id",
    "_emit_access_log",
    "_generate_request_id",
    "error_to_json",
    "parse_rpc_request",
    "serialize_response",
]
