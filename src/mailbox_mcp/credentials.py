"""
Credentials Management
======================

Mailbox credentials, either given in the settings or looked up in the
keychain through the biosecret CLI. They are held in memory only and never
written to disk or logged.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass

from contracts import (
    BiosecretDeniedError,
    BiosecretNotFoundError,
)

BIOSECRET_SERVICE = "mailbox-mcp"
BIOSECRET_TIMEOUT = 30


@dataclass(frozen=True)
class Credentials:
    """Mailbox credentials held in memory only."""

    username: str
    password: str
    server: str
    port: int = 993
    use_ssl: bool = True

    def __repr__(self) -> str:
        return (
            f"Credentials(username={self.username!r}, server={self.server!r}, "
            f"port={self.port!r}, use_ssl={self.use_ssl!r})"
        )


def parse_credentials(payload: str) -> Credentials:
    """
    Build Credentials from the JSON document biosecret stores.

    ``username``, ``password`` and ``server`` are required; ``port`` and
    ``use_ssl`` fall back to implicit TLS on 993.

    Raises:
        BiosecretNotFoundError: Payload is not a JSON object with the required keys.
    """
    try:
        data = json.loads(payload)
        return Credentials(
            username=data["username"],
            password=data["password"],
            server=data["server"],
            port=int(data.get("port", 993)),
            use_ssl=bool(data.get("use_ssl", True)),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise BiosecretNotFoundError("Invalid credential format") from e


def retrieve_credentials(account_id: str, *, service: str = BIOSECRET_SERVICE) -> Credentials:
    """
    Retrieve credentials stored under ``{service}/{account_id}``.

    Raises:
        BiosecretDeniedError: User cancelled the biometric prompt or it timed out.
        BiosecretNotFoundError: Nothing stored under the key, unusable payload,
            or the CLI is missing.
    """
    key = f"{service}/{account_id}"
    try:
        result = subprocess.run(
            ["biosecret", "get", key],
            capture_output=True,
            text=True,
            timeout=BIOSECRET_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise BiosecretDeniedError("Biometric authentication timed out") from e
    except FileNotFoundError as e:
        raise BiosecretNotFoundError("biosecret CLI not found in PATH") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").lower()
        if "cancel" in stderr or "denied" in stderr:
            raise BiosecretDeniedError("User cancelled biometric authentication")
        raise BiosecretNotFoundError(f"No credentials found for {key}")

    return parse_credentials(result.stdout)
