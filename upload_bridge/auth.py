# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bearer-token authentication.

``TokenAuthenticator`` is an ``authenticate`` callback for
:func:`upload_bridge.http.make_wsgi_app`.  It reads
``Authorization: Bearer <token>`` and looks the token up in a fixed table
of principals, raising ``ValueError`` (missing or malformed header) or
``PermissionError`` (unknown token) as the HTTP layer expects.

A token table can be loaded from a JSON file of the form::

    {"<token>": {"id": 42, "sdk_address": "http://sdk-1:5279/"}}
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

import falcon

from upload_bridge.rpc import Principal

__all__ = ["TokenAuthenticator", "load_tokens"]

_BEARER = "Bearer "


class TokenAuthenticator:
    """Resolve principals from bearer tokens."""

    __slots__ = ("_tokens",)

    def __init__(self, tokens: Mapping[str, Principal]) -> None:
        self._tokens = dict(tokens)

    def __call__(self, req: falcon.Request) -> Principal:
        """Return the principal for the request's bearer token.

        Raises:
            ValueError: If the header is missing or malformed.
            PermissionError: If the token is unknown.

        """
        header = req.get_header("Authorization") or ""
        if not header.startswith(_BEARER):
            raise ValueError("Missing or invalid Authorization header")
        token = header.removeprefix(_BEARER).strip()
        principal = self._tokens.get(token)
        if principal is None:
            raise PermissionError("Unknown auth token")
        return principal


def load_tokens(path: str | os.PathLike[str]) -> dict[str, Principal]:
    """Load a token table from a JSON file.

    Raises:
        ValueError: If the file is not an object of token → principal objects.

    """
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a JSON object of tokens")
    tokens: dict[str, Principal] = {}
    for token, entry in raw.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), int):
            raise ValueError(f"{path}: entry for token {token[:4]}... must be an object with an integer 'id'")
        sdk_address = entry.get("sdk_address")
        tokens[token] = Principal(id=entry["id"], sdk_address=str(sdk_address) if sdk_address else None)
    return tokens
