"""Shared fixtures."""

import pytest

from tests.fakes import FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def header_block():
    return (
        b"From: Alice Example <alice@example.com>\r\n"
        b"To: Bob <bob@example.com>, carol@example.com\r\n"
        b"Cc: Dave <DAVE@example.com>\r\n"
        b"Reply-To: replies@example.com\r\n"
        b"Subject: =?UTF-8?B?SGVsbG8gV29ybGQ=?=\r\n"
        b"Date: Mon, 13 Jan 2026 10:00:00 +0000 (UTC)\r\n"
        b"Message-ID: <abc123@example.com>\r\n"
        b"\r\n"
    )
