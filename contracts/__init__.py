"""
Mailbox Contract Index
======================

AUTHORITY: This file is the single entrypoint for all mailbox contracts.
Import from here, not from individual contract files.
"""

from contracts.mailbox_contract import (
    Attachment,
    AuthFailedError,
    BiosecretDeniedError,
    BiosecretNotFoundError,
    CommandFailedError,
    ConnectionFailedError,
    ConnectionStatus,
    ConnectivityError,
    Conversion,
    ConversionOutcome,
    EncodingConversionError,
    FilesystemContract,
    FolderInfo,
    FolderNotFoundError,
    InvalidConfigError,
    MailboxError,
    MailboxStatus,
    Message,
    MessageFlag,
    MessageNotFoundError,
    MessageSummary,
    MimePart,
    MimeType,
    NotConnectedError,
    NotFoundError,
    PartDiagnostic,
    Quota,
    StorageError,
    StorageOutcome,
    StructureError,
    TransferEncoding,
    TransportContract,
)

__all__ = [
    # Domain Types
    "MimeType",
    "TransferEncoding",
    "ConversionOutcome",
    "StorageOutcome",
    "MessageFlag",
    "MimePart",
    "Conversion",
    "Attachment",
    "PartDiagnostic",
    "Message",
    "MessageSummary",
    "FolderInfo",
    "MailboxStatus",
    "Quota",
    "ConnectionStatus",
    # Error Types
    "MailboxError",
    "ConnectivityError",
    "ConnectionFailedError",
    "AuthFailedError",
    "NotConnectedError",
    "CommandFailedError",
    "StructureError",
    "EncodingConversionError",
    "StorageError",
    "NotFoundError",
    "MessageNotFoundError",
    "FolderNotFoundError",
    "InvalidConfigError",
    "BiosecretDeniedError",
    "BiosecretNotFoundError",
    # Contracts
    "TransportContract",
    "FilesystemContract",
]
