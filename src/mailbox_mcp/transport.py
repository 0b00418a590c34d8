"""
IMAP Transport
==============

Owns the single mailbox session and exposes the primitive operations the
rest of the package is built on.

Before every primitive the session is pinged (NOOP); a dead session is
closed and reopened transparently. A failure during the primitive itself
is reported as ConnectivityError and the session is dropped, so callers
retry the whole operation rather than resuming a partial one.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from contracts import (
    AuthFailedError,
    CommandFailedError,
    ConnectionFailedError,
    ConnectivityError,
    FolderNotFoundError,
    MailboxError,
    MessageFlag,
    MessageNotFoundError,
    MimePart,
    MimeType,
    NotConnectedError,
    Quota,
    StructureError,
    TransferEncoding,
)
from src.mailbox_mcp.credentials import Credentials

logger = logging.getLogger(__name__)

STATUS_ITEMS = ("MESSAGES", "RECENT", "UNSEEN", "UIDNEXT", "UIDVALIDITY")


# =============================================================================
# BODYSTRUCTURE PARSING
# =============================================================================

def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _pairs(value: Any) -> tuple[tuple[str, str], ...]:
    if not isinstance(value, (tuple, list)):
        return ()
    items = list(value)
    return tuple((_text(items[i]), _text(items[i + 1])) for i in range(0, len(items) - 1, 2))


def _field(node: Sequence, index: int) -> Any:
    return node[index] if len(node) > index else None


def _disposition(value: Any) -> tuple[str | None, tuple[tuple[str, str], ...]]:
    if not isinstance(value, (tuple, list)) or not value:
        return None, ()
    return _text(value[0]).lower() or None, _pairs(_field(value, 1))


def _parse_multipart(node: Sequence) -> MimePart:
    if isinstance(node[0], list):
        # imapclient's BodyData gathers the child parts into a list
        children, rest = node[0], list(node[1:])
    else:
        split = next(
            (i for i, item in enumerate(node) if not isinstance(item, (tuple, list))),
            len(node),
        )
        children, rest = node[:split], list(node[split:])

    disposition, disposition_parameters = _disposition(_field(rest, 2))
    return MimePart(
        type=MimeType.MULTIPART,
        subtype=_text(_field(rest, 0)).lower() or "mixed",
        parameters=_pairs(_field(rest, 1)),
        disposition=disposition,
        disposition_parameters=disposition_parameters,
        children=tuple(parse_body_structure(child) for child in children),
    )


def _parse_single(node: Sequence) -> MimePart:
    mime_type = MimeType.from_imap(node[0])
    subtype = _text(_field(node, 1)).lower()
    children: tuple[MimePart, ...] = ()

    if mime_type is MimeType.TEXT:
        extension = 8
    elif mime_type is MimeType.MESSAGE and subtype == "rfc822":
        extension = 10
        body = _field(node, 8)
        if isinstance(body, (tuple, list)) and body:
            children = (parse_body_structure(body),)
    else:
        extension = 7

    disposition, disposition_parameters = _disposition(_field(node, extension + 1))
    return MimePart(
        type=mime_type,
        subtype=subtype,
        encoding=TransferEncoding.from_imap(_field(node, 5)),
        parameters=_pairs(_field(node, 2)),
        disposition=disposition,
        disposition_parameters=disposition_parameters,
        part_id=_text(_field(node, 3)) or None,
        children=children,
    )


def parse_body_structure(node: Sequence) -> MimePart:
    """
    Convert an IMAP BODYSTRUCTURE response into a MimePart tree.

    Accepts both imapclient's BodyData (children nested in a list) and the
    raw tuple form found inside message/rfc822 parts.

    Raises:
        StructureError: The response is empty or not a sequence.
    """
    if not isinstance(node, (tuple, list)) or not node:
        raise StructureError(f"Unusable BODYSTRUCTURE: {node!r}")
    if isinstance(node[0], (tuple, list)):
        return _parse_multipart(node)
    return _parse_single(node)


# =============================================================================
# SESSION
# =============================================================================

class ImapTransport:
    """Single IMAP session with primitive operations."""

    def __init__(
        self,
        credentials: Credentials,
        *,
        folder: str = "INBOX",
        timeout: float | None = 30.0,
    ) -> None:
        self._credentials = credentials
        self._folder = folder
        self._timeout = timeout
        self._client: IMAPClient | None = None
        self._active = False
        self._lock = threading.RLock()
        self._connected_at: float | None = None
        self.reconnections = 0

    @property
    def connected(self) -> bool:
        return self._active and self._client is not None

    @property
    def server(self) -> str:
        return self._credentials.server

    @property
    def folder(self) -> str:
        return self._folder

    @property
    def uptime_seconds(self) -> int:
        if self._connected_at is None or self._client is None:
            return 0
        return int(time.monotonic() - self._connected_at)

    def connect(self) -> None:
        """
        Open the session and select the configured folder.

        Raises:
            ConnectionFailedError: Host unreachable.
            AuthFailedError: Login rejected.
            FolderNotFoundError: Configured folder cannot be selected.
        """
        with self._lock:
            self._discard()
            self._client = self._open()
            self._active = True
            self._connected_at = time.monotonic()

    def _open(self) -> IMAPClient:
        credentials = self._credentials
        try:
            client = IMAPClient(
                credentials.server,
                port=credentials.port,
                ssl=credentials.use_ssl,
                timeout=self._timeout,
            )
        except Exception as e:
            raise ConnectionFailedError(f"Failed to connect: {e}") from e

        try:
            client.login(credentials.username, credentials.password)
        except Exception as e:
            raise AuthFailedError(f"Authentication failed: {e}") from e

        try:
            client.select_folder(self._folder)
        except Exception as e:
            self._logout(client)
            raise FolderNotFoundError(f"Folder not found: {self._folder}") from e

        logger.info("Connected to %s", credentials.server)
        return client

    def ping(self) -> bool:
        """Return True when the session answers a NOOP."""
        if self._client is None:
            return False
        try:
            self._client.noop()
        except Exception as e:
            logger.debug("NOOP failed: %s", e)
            return False
        return True

    def close(self) -> None:
        with self._lock:
            self._discard()
            self._active = False
            self._connected_at = None

    @staticmethod
    def _logout(client: IMAPClient) -> None:
        try:
            client.logout()
        except Exception as e:
            logger.debug("Error closing IMAP connection: %s", e)

    def _discard(self) -> None:
        if self._client is not None:
            self._logout(self._client)
            self._client = None

    def _session(self) -> IMAPClient:
        if not self._active:
            raise NotConnectedError("Not connected to mail server")
        if not self.ping():
            logger.warning("IMAP connection lost, reconnecting to %s", self.server)
            self._discard()
            self._client = self._open()
            self._connected_at = time.monotonic()
            self.reconnections += 1
        return self._client

    @contextmanager
    def _command(self, operation: str) -> Iterator[IMAPClient]:
        with self._lock:
            client = self._session()
            try:
                yield client
            except MailboxError:
                raise
            except (IMAPClientAbortError, OSError) as e:
                self._discard()
                raise ConnectivityError(f"{operation} failed: {e}") from e
            except IMAPClientError as e:
                raise CommandFailedError(f"{operation} failed: {e}") from e

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    def fetch_header(self, uid: int) -> bytes:
        with self._command("fetch header") as client:
            response = client.fetch([uid], ["BODY.PEEK[HEADER]"])
        data = response.get(uid)
        if not data or not data.get(b"BODY[HEADER]"):
            raise MessageNotFoundError(f"Message {uid} not found")
        return data[b"BODY[HEADER]"]

    def fetch_structure(self, uid: int) -> MimePart:
        with self._command("fetch structure") as client:
            response = client.fetch([uid], ["BODYSTRUCTURE"])
        data = response.get(uid)
        if not data or not data.get(b"BODYSTRUCTURE"):
            raise MessageNotFoundError(f"Message {uid} has no structure")
        return parse_body_structure(data[b"BODYSTRUCTURE"])

    def fetch_body(self, uid: int, section: str, *, peek: bool = True) -> bytes:
        """Fetch one section, or the body without headers for an empty section."""
        spec = section or "TEXT"
        item = f"BODY.PEEK[{spec}]" if peek else f"BODY[{spec}]"
        with self._command("fetch body") as client:
            response = client.fetch([uid], [item])
        data = response.get(uid)
        if data is None:
            raise MessageNotFoundError(f"Message {uid} not found")
        key = f"BODY[{spec}]".encode("ascii")
        if key not in data:
            raise StructureError(f"Section {section or 'TEXT'} missing from response")
        return data[key] or b""

    def search(self, criteria: str | Sequence = "ALL") -> list[int]:
        with self._command("search") as client:
            return sorted(client.search(criteria))

    def sort(self, criteria: Sequence[str], search: str | Sequence = "ALL") -> list[int]:
        with self._command("sort") as client:
            return list(client.sort(list(criteria), search))

    def set_flag(self, uids: Sequence[int], flag: MessageFlag) -> None:
        with self._command("set flag") as client:
            client.add_flags(list(uids), [flag.imap])

    def clear_flag(self, uids: Sequence[int], flag: MessageFlag) -> None:
        with self._command("clear flag") as client:
            client.remove_flags(list(uids), [flag.imap])

    def delete(self, uids: Sequence[int]) -> None:
        with self._command("delete") as client:
            client.delete_messages(list(uids))

    def move(self, uids: Sequence[int], folder: str) -> None:
        with self._command("move") as client:
            if not client.folder_exists(folder):
                raise FolderNotFoundError(f"Folder not found: {folder}")
            if client.has_capability("MOVE"):
                client.move(list(uids), folder)
            else:
                client.copy(list(uids), folder)
                client.delete_messages(list(uids))

    def expunge(self) -> None:
        with self._command("expunge") as client:
            client.expunge()

    def get_quota(self, mailbox: str) -> Quota | None:
        with self._command("quota") as client:
            if not client.has_capability("QUOTA"):
                return None
            _roots, quotas = client.get_quota_root(mailbox)
        for quota in quotas:
            if _text(quota.resource).upper() == "STORAGE":
                return Quota(root=_text(quota.quota_root), limit=quota.limit, usage=quota.usage)
        return None

    def list_folders(self, pattern: str = "*") -> list[str]:
        with self._command("list folders") as client:
            return [name for _flags, _delimiter, name in client.list_folders(pattern=pattern)]

    def folder_status(self, folder: str | None = None) -> dict[str, int]:
        folder = folder or self._folder
        with self._command("status") as client:
            try:
                status = client.folder_status(folder, list(STATUS_ITEMS))
            except IMAPClientAbortError:
                raise
            except IMAPClientError as e:
                raise FolderNotFoundError(f"Folder not found: {folder}") from e
        return {_text(key).upper(): int(value) for key, value in status.items()}

    def fetch_overview(self, uids: Sequence[int]) -> dict[int, dict]:
        with self._command("fetch overview") as client:
            return client.fetch(list(uids), ["ENVELOPE", "FLAGS", "RFC822.SIZE"])
