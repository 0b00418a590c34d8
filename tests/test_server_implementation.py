"""
Mailbox MCP Server Implementation Tests
=======================================

The server and mailbox client end to end, against a mocked IMAPClient.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from imapclient.response_types import Address, Envelope

from contracts import (
    AuthFailedError,
    FolderInfo,
    MailboxStatus,
    Message,
    NotConnectedError,
)
from src.mailbox_mcp.config import MailboxConfig
from src.mailbox_mcp.credentials import Credentials
from src.mailbox_mcp.server import MailboxMCPServer, create_server


# =============================================================================
# TEST FIXTURES
# =============================================================================

@pytest.fixture
def mock_config():
    """Valid test configuration."""
    return MailboxConfig(
        credentials=Credentials(
            username="test@example.com",
            password="secret123",
            server="imap.example.com",
        ),
    )


@pytest.fixture
def sample_header():
    return (
        b"From: Sender <sender@example.com>\r\n"
        b"To: Recipient <recipient@example.com>\r\n"
        b"Subject: Test Subject\r\n"
        b"Date: Tue, 13 Jan 2026 10:00:00 +0000\r\n"
        b"Message-ID: <abc123@example.com>\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_body():
    return b"This is a test email body."


@pytest.fixture
def mock_imap_client(sample_header, sample_body):
    """
    Mock IMAPClient serving single-part text messages: UID 100 in 7bit,
    UID 101 in base64. BODY[] carries the header block, BODY[TEXT] does not.
    """
    messages = {
        100: (b"7BIT", sample_body),
        101: (b"BASE64", b"SGVsbG8gd29ybGQ=\r\n"),
    }

    with patch("src.mailbox_mcp.transport.IMAPClient") as mock:
        client = MagicMock()
        mock.return_value = client

        def fetch(uids, items):
            [uid] = uids
            if uid not in messages:
                return {}
            encoding, body = messages[uid]
            item = items[0]
            if item == "BODY.PEEK[HEADER]":
                return {uid: {b"BODY[HEADER]": sample_header}}
            if item == "BODYSTRUCTURE":
                return {uid: {b"BODYSTRUCTURE": (
                    b"TEXT", b"PLAIN", (b"CHARSET", b"utf-8"), None, None, encoding, len(body), 1,
                )}}
            if item in ("BODY.PEEK[]", "BODY[]"):
                return {uid: {b"BODY[]": sample_header + body}}
            if item in ("BODY.PEEK[TEXT]", "BODY[TEXT]"):
                return {uid: {b"BODY[TEXT]": body}}
            return {}

        client.fetch.side_effect = fetch
        client.search.return_value = [100, 200, 300]
        client.list_folders.return_value = [
            ([], b"/", "INBOX"),
            ([], b"/", "Sent"),
        ]
        client.folder_status.return_value = {
            b"MESSAGES": 10,
            b"RECENT": 1,
            b"UNSEEN": 3,
            b"UIDNEXT": 1000,
            b"UIDVALIDITY": 12345,
        }
        yield mock


@pytest.fixture
def connected_server(mock_imap_client, mock_config):
    """Server with mocked IMAP connection."""
    server = create_server()
    server.connect(mock_config)
    return server


# =============================================================================
# STARTUP
# =============================================================================

class TestStartup:

    def test_connect(self, mock_imap_client, mock_config):
        server = create_server()
        server.connect(mock_config)

        status = server.mailbox_connection_status()
        assert status.connected is True
        assert status.server == "imap.example.com"
        assert status.folder == "INBOX"

    def test_single_connection_per_process(self, connected_server, mock_config):
        with pytest.raises(RuntimeError):
            connected_server.connect(mock_config)

    def test_auth_failed(self, mock_config):
        with patch("src.mailbox_mcp.transport.IMAPClient") as mock:
            mock.return_value.login.side_effect = Exception("Authentication failed")

            server = create_server()
            with pytest.raises(AuthFailedError):
                server.connect(mock_config)
            assert server.mailbox_connection_status().connected is False

    def test_disconnect(self, connected_server):
        connected_server.disconnect()

        assert connected_server.mailbox_connection_status().connected is False
        with pytest.raises(NotConnectedError):
            connected_server.mailbox_search()

    def test_status_before_connect(self):
        status = MailboxMCPServer().mailbox_connection_status()
        assert status.connected is False
        assert status.reconnections == 0


# =============================================================================
# MESSAGES
# =============================================================================

class TestMessageTools:

    def test_get_message(self, connected_server, mock_imap_client):
        message = connected_server.mailbox_get_message(uid=100)

        assert isinstance(message, Message)
        assert message.subject == "Test Subject"
        assert message.from_address == "sender@example.com"
        assert message.text_plain == "This is a test email body."
        mock_imap_client.return_value.fetch.assert_any_call([100], ["BODY.PEEK[TEXT]"])

    def test_get_message_single_part_body_excludes_headers(self, connected_server):
        message = connected_server.mailbox_get_message(uid=101)

        assert message.text_plain == "Hello world"
        assert "Subject" not in message.text_plain
        assert message.diagnostics == []

    def test_get_message_marks_read_on_request(self, connected_server, mock_imap_client):
        connected_server.mailbox_get_message(uid=100, mark_as_read=True)

        mock_imap_client.return_value.fetch.assert_any_call([100], ["BODY[TEXT]"])

    def test_get_message_unknown_uid(self, connected_server):
        [content] = connected_server.dispatch("mailbox_get_message", {"uid": 999})

        assert content.text.startswith("Error: MessageNotFoundError")

    def test_get_message_serialized(self, connected_server):
        [content] = connected_server.dispatch("mailbox_get_message", {"uid": 100})

        payload = json.loads(content.text)
        assert payload["subject"] == "Test Subject"
        assert payload["to"] == {"recipient@example.com": "Recipient"}
        assert payload["attachments"] == []

    def test_get_message_no_body_logging(self, connected_server, caplog):
        with caplog.at_level("DEBUG"):
            connected_server.mailbox_get_message(uid=100)

        assert "This is a test email body" not in caplog.text
        assert "secret123" not in caplog.text

    def test_search(self, connected_server, mock_imap_client):
        assert connected_server.mailbox_search(criteria="UNSEEN") == {"uids": [100, 200, 300]}
        mock_imap_client.return_value.search.assert_called_with("UNSEEN")

    def test_sort_reverse(self, connected_server, mock_imap_client):
        client = mock_imap_client.return_value
        client.sort.return_value = [300, 100]

        result = connected_server.mailbox_sort(criteria="DATE", reverse=True)

        assert result == {"uids": [300, 100]}
        client.sort.assert_called_once_with(["REVERSE DATE"], "ALL")

    def test_messages_info(self, connected_server, mock_imap_client):
        envelope = Envelope(
            date=datetime(2026, 1, 13, 10, 0, tzinfo=timezone.utc),
            subject=b"=?utf-8?q?Caf=C3=A9?=",
            from_=(Address(b"Alice", None, b"alice", b"example.com"),),
            sender=None,
            reply_to=None,
            to=(Address(None, None, b"bob", b"example.com"),),
            cc=None,
            bcc=None,
            in_reply_to=None,
            message_id=b"<m1@example.com>",
        )
        mock_imap_client.return_value.fetch.side_effect = None
        mock_imap_client.return_value.fetch.return_value = {
            100: {b"ENVELOPE": envelope, b"FLAGS": (b"\\Seen", b"\\Flagged"), b"RFC822.SIZE": 2048},
        }

        [summary] = connected_server.mailbox_messages_info(uids=[100])["messages"]

        assert summary.subject == "Café"
        assert summary.from_ == "Alice <alice@example.com>"
        assert summary.to == "bob@example.com"
        assert summary.date == "2026-01-13T10:00:00+00:00"
        assert summary.size == 2048
        assert summary.seen and summary.flagged
        assert not summary.deleted

    def test_messages_info_empty(self, connected_server, mock_imap_client):
        assert connected_server.mailbox_messages_info(uids=[]) == {"messages": []}


# =============================================================================
# FLAGS AND MUTATION
# =============================================================================

class TestMutationTools:

    @pytest.mark.parametrize(
        "action, method, flag",
        [
            ("read", "add_flags", b"\\Seen"),
            ("unread", "remove_flags", b"\\Seen"),
            ("important", "add_flags", b"\\Flagged"),
            ("unimportant", "remove_flags", b"\\Flagged"),
        ],
    )
    def test_mark(self, connected_server, mock_imap_client, action, method, flag):
        result = connected_server.mailbox_mark(uids=[100, 200], action=action)

        assert result["success"] is True
        getattr(mock_imap_client.return_value, method).assert_called_once_with([100, 200], [flag])

    def test_mark_unknown_action(self, connected_server):
        [content] = connected_server.dispatch("mailbox_mark", {"uids": [1], "action": "archive"})

        assert content.text.startswith("Error: MailboxError")

    def test_delete_only_flags(self, connected_server, mock_imap_client):
        client = mock_imap_client.return_value

        connected_server.mailbox_delete(uids=[100])

        client.delete_messages.assert_called_once_with([100])
        client.expunge.assert_not_called()

    def test_move(self, connected_server, mock_imap_client):
        client = mock_imap_client.return_value
        client.folder_exists.return_value = True
        client.has_capability.return_value = True

        result = connected_server.mailbox_move(uids=[100], folder="Archive")

        assert result["folder"] == "Archive"
        client.move.assert_called_once_with([100], "Archive")

    def test_move_missing_folder(self, connected_server, mock_imap_client):
        mock_imap_client.return_value.folder_exists.return_value = False

        [content] = connected_server.dispatch("mailbox_move", {"uids": [100], "folder": "Nope"})

        assert content.text.startswith("Error: FolderNotFoundError")

    def test_expunge(self, connected_server, mock_imap_client):
        assert connected_server.mailbox_expunge() == {"success": True}
        mock_imap_client.return_value.expunge.assert_called_once()


# =============================================================================
# MAILBOX
# =============================================================================

class TestMailboxTools:

    def test_list_folders(self, connected_server):
        folders = connected_server.mailbox_list_folders()["folders"]

        assert folders == [
            FolderInfo(name="INBOX", message_count=10, unread_count=3, uidvalidity=12345),
            FolderInfo(name="Sent", message_count=10, unread_count=3, uidvalidity=12345),
        ]

    def test_mailbox_status(self, connected_server):
        assert connected_server.mailbox_status() == {
            "status": MailboxStatus(messages=10, recent=1, unseen=3, uidnext=1000, uidvalidity=12345)
        }

    def test_quota_unsupported(self, connected_server, mock_imap_client):
        mock_imap_client.return_value.has_capability.return_value = False

        [content] = connected_server.dispatch("mailbox_quota", {})

        assert json.loads(content.text) == {"quota": None}

    def test_unknown_tool(self, connected_server):
        [content] = connected_server.dispatch("mailbox_send", {})
        assert content.text == "Unknown tool: mailbox_send"

    def test_not_connected_error_text(self):
        [content] = create_server().dispatch("mailbox_search", {})
        assert content.text.startswith("Error: NotConnectedError")
