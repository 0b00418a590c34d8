"""
Attachment Resolution
=====================

Names attachments and writes their bytes to local storage.

Storage failures never abort a message fetch; they are reported on the
returned Attachment (outcome FAILED plus the error text).
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Mapping

from contracts import (
    Attachment,
    FilesystemContract,
    MimePart,
    StorageError,
    StorageOutcome,
)
from src.mailbox_mcp.headers import decode_header_value
from src.mailbox_mcp.rfc2231 import decode_extended

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s")
_UNSAFE_CHARS = re.compile(r"[^\w.]")
_UNDERSCORE_RUNS = re.compile(r"_+")
_PATH_SEPARATORS = {"/", "\\", os.sep} | ({os.altsep} if os.altsep else set())


class LocalFilesystem:
    """Filesystem collaborator backed by the local disk."""

    def write(self, path: str, data: bytes) -> None:
        Path(path).write_bytes(data)

    def exists(self, directory: str) -> bool:
        return os.path.isdir(directory)


def sanitize_filename(filename: str) -> str:
    """Reduce a display filename to letters, digits, '_' and '.'."""
    name = _WHITESPACE.sub("_", filename)
    name = _UNSAFE_CHARS.sub("", name)
    name = _UNDERSCORE_RUNS.sub("_", name)
    return name.strip("_")


def storage_name(message_id: int | str, identity: str, filename: str) -> str:
    """Compose the on-disk name ``{message_id}_{identity}_{safe filename}``."""
    safe = sanitize_filename(filename) or "attachment"
    name = f"{message_id}_{identity}_{safe}"
    return "".join(ch for ch in name if ch not in _PATH_SEPARATORS)


class AttachmentResolver:
    """Turns an attachment-bearing part into an Attachment."""

    def __init__(
        self,
        storage_dir: str | None = None,
        *,
        target_charset: str = "utf-8",
        filesystem: FilesystemContract | None = None,
        keep_data: bool = False,
    ) -> None:
        self._storage_dir = storage_dir
        self._target_charset = target_charset
        self._filesystem = filesystem or LocalFilesystem()
        self._keep_data = keep_data

    def filename_for(self, part: MimePart, identity: str, parameters: Mapping[str, str]) -> str:
        raw = parameters.get("filename") or parameters.get("name")
        if not raw:
            return f"{identity}.{part.subtype.lower()}"
        decoded = decode_header_value(raw, self._target_charset)
        return decode_extended(decoded, self._target_charset)

    def resolve(
        self,
        message_id: int,
        part: MimePart,
        identity: str,
        parameters: Mapping[str, str],
        data: bytes,
    ) -> Attachment:
        filename = self.filename_for(part, identity, parameters)
        kept = data if self._keep_data else None
        base = dict(
            id=identity,
            filename=filename,
            subtype=part.subtype.lower(),
            mime_type=part.mime_type,
        )

        if not self._storage_dir:
            return Attachment(**base, data=kept, outcome=StorageOutcome.NOT_STORED)
        if not self._filesystem.exists(self._storage_dir):
            logger.warning("Attachment directory %s is missing", self._storage_dir)
            return Attachment(**base, data=kept, outcome=StorageOutcome.NOT_STORED)

        path = os.path.join(self._storage_dir, storage_name(message_id, identity, filename))
        try:
            self._filesystem.write(path, data)
        except OSError as e:
            error = StorageError(f"Could not write {path}: {e.strerror or e}")
            logger.warning("%s", error)
            return Attachment(**base, data=kept, outcome=StorageOutcome.FAILED, error=str(error))

        return Attachment(**base, file_path=path, data=kept, outcome=StorageOutcome.STORED)
