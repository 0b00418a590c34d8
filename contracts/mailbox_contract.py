"""
Mailbox Contract
================

Domain types, error taxonomy and collaborator protocols for the IMAP
mailbox accessor.

Everything the implementation exchanges with its callers or with its
collaborators (transport, filesystem) is declared here. Import from the
``contracts`` index, not from this file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable


# =============================================================================
# ENUMERATIONS
# =============================================================================

class MimeType(Enum):
    """Top-level MIME media types as reported in BODYSTRUCTURE."""
    TEXT = "text"
    MULTIPART = "multipart"
    MESSAGE = "message"
    APPLICATION = "application"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"

    @classmethod
    def from_imap(cls, value: str | bytes | None) -> MimeType:
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="replace")
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class TransferEncoding(Enum):
    """Content-Transfer-Encoding values understood by the structure walker."""
    SEVEN_BIT = "7bit"
    EIGHT_BIT = "8bit"
    BINARY = "binary"
    BASE64 = "base64"
    QUOTED_PRINTABLE = "quoted-printable"
    OTHER = "other"

    @classmethod
    def from_imap(cls, value: str | bytes | None) -> TransferEncoding:
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="replace")
        value = (value or "").strip().lower()
        if not value:
            return cls.SEVEN_BIT
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class ConversionOutcome(Enum):
    """How a charset conversion was achieved."""
    CONVERTED = "converted"
    FALLBACK = "fallback"
    PASSTHROUGH = "passthrough"


class StorageOutcome(Enum):
    """What happened to an attachment's bytes."""
    STORED = "stored"
    NOT_STORED = "not_stored"
    FAILED = "failed"


class MessageFlag(Enum):
    """System flags the client sets and clears."""
    SEEN = "\\Seen"
    FLAGGED = "\\Flagged"
    ANSWERED = "\\Answered"
    DELETED = "\\Deleted"
    DRAFT = "\\Draft"

    @property
    def imap(self) -> bytes:
        return self.value.encode("ascii")


# =============================================================================
# DOMAIN TYPES
# =============================================================================

@dataclass(frozen=True)
class MimePart:
    """
    One node of a message's MIME structure tree.

    ``parameters`` and ``disposition_parameters`` keep the server's order
    and spelling; case folding happens when the walker merges them.
    """
    type: MimeType
    subtype: str
    encoding: TransferEncoding = TransferEncoding.SEVEN_BIT
    parameters: tuple[tuple[str, str], ...] = ()
    disposition: str | None = None
    disposition_parameters: tuple[tuple[str, str], ...] = ()
    part_id: str | None = None
    children: tuple[MimePart, ...] = ()

    @property
    def is_multipart(self) -> bool:
        return self.type is MimeType.MULTIPART

    @property
    def is_rfc822(self) -> bool:
        return self.type is MimeType.MESSAGE and self.subtype.lower() == "rfc822"

    @property
    def mime_type(self) -> str:
        return f"{self.type.value}/{self.subtype.lower()}"


@dataclass(frozen=True)
class Conversion:
    """Result of a charset conversion."""
    data: bytes
    outcome: ConversionOutcome
    detail: str = ""


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata, storage location and (optionally) content."""
    id: str
    filename: str
    subtype: str
    mime_type: str
    file_path: str | None = None
    data: bytes | None = None
    outcome: StorageOutcome = StorageOutcome.NOT_STORED
    error: str | None = None


@dataclass(frozen=True)
class PartDiagnostic:
    """A recoverable problem met while decoding one part."""
    section: str
    kind: str  # structure | encoding | storage
    code: str
    detail: str


@dataclass(frozen=True)
class Message:
    """Fully decoded message."""
    uid: int
    date: str  # ISO8601, empty when the Date header is unusable
    subject: str
    from_name: str
    from_address: str
    to: dict[str, str]
    to_string: str
    cc: dict[str, str]
    reply_to: dict[str, str]
    text_plain: str
    text_html: str
    attachments: list[Attachment] = field(default_factory=list)
    diagnostics: list[PartDiagnostic] = field(default_factory=list)


@dataclass(frozen=True)
class MessageSummary:
    """Overview row for one message."""
    uid: int
    subject: str
    from_: str
    to: str
    date: str
    message_id: str
    size: int
    seen: bool
    flagged: bool
    answered: bool
    deleted: bool
    draft: bool


@dataclass(frozen=True)
class FolderInfo:
    """Mailbox folder metadata."""
    name: str
    message_count: int
    unread_count: int
    uidvalidity: int


@dataclass(frozen=True)
class MailboxStatus:
    """STATUS counters of the configured folder."""
    messages: int
    recent: int
    unseen: int
    uidnext: int
    uidvalidity: int


@dataclass(frozen=True)
class Quota:
    """STORAGE quota in KiB."""
    root: str
    limit: int
    usage: int


@dataclass(frozen=True)
class ConnectionStatus:
    """Current connection state."""
    connected: bool
    server: str
    folder: str
    uptime_seconds: int
    reconnections: int


# =============================================================================
# ERROR TYPES
# =============================================================================

class MailboxError(Exception):
    """Base error for all mailbox operations."""
    code: str = "MAILBOX_ERROR"


class ConnectivityError(MailboxError):
    """
    Transport unreachable, dropped, or failed mid-command.

    RECOVERY: Fatal to the current operation. The session is reopened on
    the next primitive; callers retry the whole operation.
    """
    code = "CONNECTIVITY"


class ConnectionFailedError(ConnectivityError):
    """Network unreachable or host not found."""
    code = "CONNECTION_FAILED"


class AuthFailedError(ConnectivityError):
    """Credentials rejected by the mail server."""
    code = "AUTH_FAILED"


class NotConnectedError(MailboxError):
    """No session has been opened."""
    code = "NOT_CONNECTED"


class CommandFailedError(MailboxError):
    """Server rejected a command (NO/BAD) or lacks a required capability."""
    code = "COMMAND_FAILED"


class StructureError(MailboxError):
    """
    Malformed or undecodable MIME part.

    RECOVERY: The part is skipped and recorded as a diagnostic; the rest
    of the tree is still processed.
    """
    code = "STRUCTURE"


class EncodingConversionError(MailboxError):
    """
    Charset conversion failed.

    RECOVERY: A secondary converter is tried; if that fails too the
    original bytes pass through unconverted.
    """
    code = "ENCODING_CONVERSION"


class StorageError(MailboxError):
    """
    Attachment bytes could not be written.

    RECOVERY: Reported on the attachment, never propagated.
    """
    code = "STORAGE"


class NotFoundError(MailboxError):
    """Requested object does not exist on the server."""
    code = "NOT_FOUND"


class MessageNotFoundError(NotFoundError):
    """Message UID has no header or structure."""
    code = "MESSAGE_NOT_FOUND"


class FolderNotFoundError(NotFoundError):
    """Specified folder does not exist on server."""
    code = "FOLDER_NOT_FOUND"


class InvalidConfigError(MailboxError):
    """Configuration is incomplete or points at missing resources."""
    code = "INVALID_CONFIG"


class BiosecretDeniedError(MailboxError):
    """User cancelled the biometric prompt."""
    code = "BIOSECRET_DENIED"


class BiosecretNotFoundError(MailboxError):
    """No credentials stored under the expected keychain key."""
    code = "BIOSECRET_NOT_FOUND"


# =============================================================================
# COLLABORATOR CONTRACTS
# =============================================================================

@runtime_checkable
class TransportContract(Protocol):
    """
    Primitive IMAP operations over one session.

    Every primitive verifies liveness first and reopens the session when
    the ping fails. A failure during the primitive itself raises
    ConnectivityError; it is never retried silently.
    """

    def connect(self) -> None: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...

    def fetch_header(self, uid: int) -> bytes: ...

    def fetch_structure(self, uid: int) -> MimePart: ...

    def fetch_body(self, uid: int, section: str, *, peek: bool = True) -> bytes: ...

    def search(self, criteria: str | Sequence = "ALL") -> list[int]: ...

    def set_flag(self, uids: Sequence[int], flag: MessageFlag) -> None: ...

    def clear_flag(self, uids: Sequence[int], flag: MessageFlag) -> None: ...

    def delete(self, uids: Sequence[int]) -> None: ...

    def move(self, uids: Sequence[int], folder: str) -> None: ...

    def expunge(self) -> None: ...

    def get_quota(self, mailbox: str) -> Quota | None: ...

    def list_folders(self, pattern: str = "*") -> list[str]: ...

    def folder_status(self, folder: str | None = None) -> dict[str, int]: ...

    def fetch_overview(self, uids: Sequence[int]) -> dict[int, dict]: ...

    def sort(self, criteria: Sequence[str], search: str | Sequence = "ALL") -> list[int]: ...


@runtime_checkable
class FilesystemContract(Protocol):
    """Local storage for attachment bytes."""

    def write(self, path: str, data: bytes) -> None:
        """Create or truncate ``path`` and write ``data``."""
        ...

    def exists(self, directory: str) -> bool: ...
