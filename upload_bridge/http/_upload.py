# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Multipart upload parsing, request matching, and file extraction.

Falcon parses ``multipart/form-data`` as a forward-only stream, so the form
is read exactly once per request and cached on ``req.context``.  File parts
are spooled into a ``SpooledTemporaryFile`` (memory up to a threshold, then
an anonymous temp file) which lets ``can_handle`` inspect the request and
``save_upload`` copy the payload afterwards.  ``_RequestScopeMiddleware``
closes the spool when the response is done.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

import falcon

from upload_bridge.rpc import MissingFileError
from upload_bridge.scratch import ScratchStore

from ._common import (
    _COPY_BUFSIZE,
    _MULTIPART_CONTENT_TYPE,
    _SPOOL_MAX_BYTES,
    FILE_FIELD_NAME,
    JSON_RPC_FIELD_NAME,
)

_logger = logging.getLogger("upload_bridge.http")


@dataclass
class _FilePart:
    """A file part of the form, spooled for re-reading."""

    filename: str
    spool: IO[bytes]


@dataclass
class _UploadForm:
    """Parsed multipart form; the first occurrence of each field wins."""

    files: dict[str, _FilePart] = field(default_factory=dict)
    values: dict[str, str] = field(default_factory=dict)

    def value(self, name: str) -> str:
        """Return the text value of *name*, or ``""`` when absent."""
        return self.values.get(name, "")

    def close(self) -> None:
        """Release spooled file data."""
        for part in self.files.values():
            part.spool.close()
        self.files.clear()


def _is_multipart(req: falcon.Request) -> bool:
    content_type = req.content_type or ""
    return content_type.split(";", 1)[0].strip().lower() == _MULTIPART_CONTENT_TYPE


def _read_upload_form(req: falcon.Request) -> _UploadForm:
    """Return the request's multipart form, parsing it on first use.

    Non-multipart requests and malformed bodies yield an empty (or partial)
    form rather than an error; the result is cached either way so the body
    is never read twice.
    """
    form: _UploadForm | None = getattr(req.context, "upload_form", None)
    if form is not None:
        return form

    form = _UploadForm()
    req.context.upload_form = form
    if not _is_multipart(req):
        return form

    try:
        for part in req.get_media():
            name = part.name
            if name is None:
                continue
            if part.filename:
                if name in form.files:
                    continue
                spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_BYTES)
                try:
                    shutil.copyfileobj(part.stream, spool, _COPY_BUFSIZE)
                except BaseException:
                    spool.close()
                    raise
                spool.seek(0)
                form.files[name] = _FilePart(filename=part.filename, spool=spool)
            elif name not in form.values:
                form.values[name] = part.get_text() or ""
    except falcon.HTTPError as exc:
        _logger.debug("Unreadable multipart body: %s", exc.title, extra={"error_type": type(exc).__name__})
    return form


def can_handle(req: falcon.Request) -> bool:
    """Return whether *req* is an upload carrying a JSON-RPC request.

    True iff the form has a file part named ``file`` and a non-empty
    ``json_payload`` value.  Anything else, including a body that is not
    multipart at all, is simply not a match.
    """
    form = _read_upload_form(req)
    return FILE_FIELD_NAME in form.files and form.value(JSON_RPC_FIELD_NAME) != ""


def save_upload(
    req: falcon.Request,
    principal_id: int,
    store: ScratchStore,
    *,
    logger: logging.Logger | logging.LoggerAdapter[logging.Logger] | None = None,
) -> Path:
    """Copy the uploaded file into a new scratch file.

    Args:
        req: The upload request.
        principal_id: Owner of the scratch file.
        store: Where the scratch file is created.
        logger: Logger for progress messages (defaults to the module logger).

    Returns:
        Path of the saved file.  The file is closed.

    Raises:
        MissingFileError: If the request has no file part; nothing is
            created on disk in that case.
        OSError: If the scratch file cannot be created or written.  A
            partially written file is removed before raising.

    """
    log = logger if logger is not None else _logger
    part = _read_upload_form(req).files.get(FILE_FIELD_NAME)
    if part is None:
        raise MissingFileError(f"no file part named {FILE_FIELD_NAME!r} in request")

    dest = store.create_scratch_file(principal_id, part.filename)
    path = Path(dest.name)
    log.info("processing uploaded file %s", part.filename, extra={"user_id": principal_id})
    try:
        with dest:
            part.spool.seek(0)
            shutil.copyfileobj(part.spool, dest, _COPY_BUFSIZE)
            written = dest.tell()
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)
        raise
    finally:
        part.spool.close()

    log.info("saved uploaded file %s (%d bytes written)", path, written, extra={"user_id": principal_id})
    return path

