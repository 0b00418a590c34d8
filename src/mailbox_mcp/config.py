"""
Mailbox Configuration
=====================

Runtime settings for one mailbox: where to connect, which folder to open,
the charset decoded text is converted to, and where attachments go.
"""

from __future__ import annotations

import codecs
import os
from dataclasses import dataclass
from typing import Any, Mapping

from contracts import InvalidConfigError
from src.mailbox_mcp.credentials import Credentials, retrieve_credentials


@dataclass(frozen=True)
class MailboxConfig:
    """Settings for one mailbox session."""

    credentials: Credentials
    folder: str = "INBOX"
    encoding: str = "utf-8"
    attachments_dir: str | None = None
    keep_attachment_data: bool = False
    timeout: float | None = 30.0


def _credentials(settings: Mapping[str, Any]) -> Credentials:
    if settings.get("account"):
        return retrieve_credentials(settings["account"])

    server = settings.get("server")
    login = settings.get("login")
    if not server or not login:
        raise InvalidConfigError("Configuration requires 'account', or 'server' and 'login'")
    return Credentials(
        username=login,
        password=settings.get("password", ""),
        server=server,
        port=int(settings.get("port", 993)),
        use_ssl=bool(settings.get("use_ssl", True)),
    )


def load_config(settings: Mapping[str, Any]) -> MailboxConfig:
    """
    Build a MailboxConfig from a plain mapping.

    Credentials come from the keychain when ``account`` is set, otherwise
    from server, port, use_ssl, login and password. Other recognised keys:
    folder, encoding, attachments_dir, keep_attachment_data, timeout.

    Raises:
        InvalidConfigError: No account and server or login missing, unknown
            encoding, or attachments_dir configured but not an existing
            directory.
        BiosecretDeniedError: Keychain lookup refused.
        BiosecretNotFoundError: Nothing stored for the account.
    """
    if not isinstance(settings, Mapping):
        raise InvalidConfigError("Invalid configuration")

    encoding = settings.get("encoding") or "utf-8"
    try:
        codecs.lookup(encoding)
    except LookupError as e:
        raise InvalidConfigError(f"Unknown encoding {encoding!r}") from e

    attachments_dir = settings.get("attachments_dir") or None
    if attachments_dir:
        if not os.path.isdir(attachments_dir):
            raise InvalidConfigError(f'Directory "{attachments_dir}" not found')
        attachments_dir = os.path.realpath(attachments_dir).rstrip("\\/") or os.sep

    return MailboxConfig(
        credentials=_credentials(settings),
        folder=settings.get("folder") or "INBOX",
        encoding=encoding,
        attachments_dir=attachments_dir,
        keep_attachment_data=bool(settings.get("keep_attachment_data", False)),
        timeout=settings.get("timeout", 30.0),
    )
