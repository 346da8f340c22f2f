# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Per-user scratch files for uploads in flight.

Uploaded payloads are written to::

    {root}/{principal_id}/{random}_{original_filename}

where ``random`` is chosen by :mod:`tempfile` so concurrent uploads from the
same user never share a name.  Files are temporary: the bridge deletes each
one when its request finishes.
"""

from __future__ import annotations

import errno
import logging
import os
import tempfile
from pathlib import Path
from typing import IO

__all__ = ["ScratchStore"]

_logger = logging.getLogger("upload_bridge.scratch")


class ScratchStore:
    """Creates collision-free scratch files under a root directory."""

    __slots__ = ("root",)

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def user_dir(self, principal_id: int) -> Path:
        """Return the scratch directory for *principal_id* (not created)."""
        return self.root / str(principal_id)

    def create_scratch_file(self, principal_id: int, original_name: str) -> IO[bytes]:
        """Open a new, empty scratch file for writing.

        The user's directory is created (with parents) if missing.  The
        returned file is open in binary write mode; the caller owns it and
        must close it.

        Args:
            principal_id: Id of the user the upload belongs to.
            original_name: Client-supplied filename, used as the name suffix.

        Raises:
            OSError: If the directory or file cannot be created, or with
                ``EINVAL`` if *original_name* contains a path separator
                or a NUL byte.

        """
        if os.sep in original_name or (os.altsep and os.altsep in original_name):
            raise OSError(errno.EINVAL, "filename contains a path separator", original_name)
        if "\x00" in original_name:
            raise OSError(errno.EINVAL, "filename contains a NUL byte", original_name)

        directory = self.user_dir(principal_id)
        os.makedirs(directory, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(mode="wb", prefix="", suffix=f"_{original_name}", dir=directory, delete=False)
        _logger.debug("Created scratch file %s", handle.name, extra={"user_id": principal_id})
        return handle
