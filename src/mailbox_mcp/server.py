"""
Mailbox MCP Server
==================

MCP server exposing one IMAP mailbox as tools: search and sort, fetch a
fully decoded message, overview rows, flags, delete/move/expunge, quota,
folder listing and connection status.

One connection per process. Message bodies, attachment bytes and
credentials never reach the log.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import asdict
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from contracts import ConnectionStatus, MailboxError, Message, NotConnectedError
from src.mailbox_mcp.config import MailboxConfig
from src.mailbox_mcp.imap_client import MailboxClient
from src.mailbox_mcp.postprocess import rewrite_inline_links, strip_html_tags

# Never include message content in log records
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mailbox-mcp")

MARK_ACTIONS = ("read", "unread", "important", "unimportant")

_UIDS = {
    "type": "array",
    "items": {"type": "integer"},
    "description": "Message UIDs",
}
_NO_ARGUMENTS = {"type": "object", "properties": {}}


class MailboxMCPServer:
    """Mailbox MCP Server - IMAP mailbox access for AI agents."""

    def __init__(self) -> None:
        self._client: MailboxClient | None = None
        self._server = Server("mailbox-mcp")
        self._setup_tools()

    def _setup_tools(self) -> None:
        """Register MCP tools."""

        @self._server.list_tools()
        async def list_tools() -> list[Tool]:
            return [
                Tool(
                    name="mailbox_search",
                    description="Search the mailbox and return matching UIDs",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "criteria": {
                                "type": "string",
                                "description": "IMAP SEARCH criteria (default: ALL)",
                                "default": "ALL",
                            },
                        },
                    },
                ),
                Tool(
                    name="mailbox_sort",
                    description="Server-side sorted UIDs (requires the SORT extension)",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "criteria": {
                                "type": "string",
                                "description": "Sort key: ARRIVAL, DATE, FROM, SUBJECT, TO, CC, SIZE",
                                "default": "ARRIVAL",
                            },
                            "search_criteria": {
                                "type": "string",
                                "description": "IMAP SEARCH criteria (default: ALL)",
                                "default": "ALL",
                            },
                            "reverse": {"type": "boolean", "default": False},
                        },
                    },
                ),
                Tool(
                    name="mailbox_get_message",
                    description="Fetch one message with decoded text, HTML and attachments",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "uid": {"type": "integer", "minimum": 1},
                            "mark_as_read": {
                                "type": "boolean",
                                "description": "Set \\Seen as a side effect of the fetch",
                                "default": False,
                            },
                            "inline_base_url": {
                                "type": "string",
                                "description": "Rewrite cid: image links to this URL prefix",
                            },
                            "strip_tags": {
                                "type": "boolean",
                                "description": "Remove html/body/head/meta tags from the HTML text",
                                "default": False,
                            },
                        },
                        "required": ["uid"],
                    },
                ),
                Tool(
                    name="mailbox_messages_info",
                    description="Overview rows (subject, from, flags, size) for messages",
                    inputSchema={
                        "type": "object",
                        "properties": {"uids": _UIDS},
                        "required": ["uids"],
                    },
                ),
                Tool(
                    name="mailbox_mark",
                    description="Mark messages read, unread, important or unimportant",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "uids": _UIDS,
                            "action": {"type": "string", "enum": list(MARK_ACTIONS)},
                        },
                        "required": ["uids", "action"],
                    },
                ),
                Tool(
                    name="mailbox_delete",
                    description="Flag messages as \\Deleted (removed on expunge)",
                    inputSchema={
                        "type": "object",
                        "properties": {"uids": _UIDS},
                        "required": ["uids"],
                    },
                ),
                Tool(
                    name="mailbox_move",
                    description="Move messages to another folder",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "uids": _UIDS,
                            "folder": {"type": "string", "description": "Destination folder"},
                        },
                        "required": ["uids", "folder"],
                    },
                ),
                Tool(
                    name="mailbox_expunge",
                    description="Permanently remove messages flagged as \\Deleted",
                    inputSchema=_NO_ARGUMENTS,
                ),
                Tool(
                    name="mailbox_quota",
                    description="Storage quota (KiB) for the mailbox, if the server reports one",
                    inputSchema=_NO_ARGUMENTS,
                ),
                Tool(
                    name="mailbox_list_folders",
                    description="List folders with message and unread counts",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "pattern": {"type": "string", "default": "*"},
                        },
                    },
                ),
                Tool(
                    name="mailbox_status",
                    description="Message, recent and unseen counts for the open folder",
                    inputSchema=_NO_ARGUMENTS,
                ),
                Tool(
                    name="mailbox_connection_status",
                    description="Get current connection status",
                    inputSchema=_NO_ARGUMENTS,
                ),
            ]

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return self.dispatch(name, arguments or {})

    def dispatch(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
        handler = getattr(self, name, None) if name.startswith("mailbox_") else None
        if handler is None:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]
        try:
            result = handler(**arguments)
        except MailboxError as e:
            return [TextContent(type="text", text=f"Error: {e.__class__.__name__}: {e}")]
        return [TextContent(type="text", text=self._serialize_result(result))]

    def connect(self, config: MailboxConfig) -> None:
        """Open the single mailbox connection for this process."""
        if self._client is not None:
            raise RuntimeError("Connection already established")

        client = MailboxClient(config)
        client.connect()
        self._client = client
        logger.info("Connected to mail server")

    def disconnect(self) -> None:
        """Disconnect and clear client."""
        if self._client:
            self._client.disconnect()
            self._client = None
            logger.info("Disconnected from mail server")

    def _require_client(self) -> MailboxClient:
        """Ensure client is connected."""
        if self._client is None or not self._client.connected:
            raise NotConnectedError("Not connected to mail server")
        return self._client

    # =========================================================================
    # TOOLS
    # =========================================================================

    def mailbox_search(self, *, criteria: str = "ALL") -> dict:
        client = self._require_client()
        uids = client.search(criteria)
        logger.info("Search matched %d messages", len(uids))
        return {"uids": uids}

    def mailbox_sort(
        self,
        *,
        criteria: str = "ARRIVAL",
        search_criteria: str = "ALL",
        reverse: bool = False,
    ) -> dict:
        client = self._require_client()
        return {"uids": client.sort_messages(criteria, search_criteria, reverse=reverse)}

    def mailbox_get_message(
        self,
        *,
        uid: int,
        mark_as_read: bool = False,
        inline_base_url: str | None = None,
        strip_tags: bool = False,
    ) -> Message:
        client = self._require_client()
        logger.info("Fetching message %s", uid)
        message = client.get_message(uid, mark_as_read=mark_as_read)
        if inline_base_url:
            message = rewrite_inline_links(message, inline_base_url)
        if strip_tags:
            message = strip_html_tags(message)
        return message

    def mailbox_messages_info(self, *, uids: list[int]) -> dict:
        client = self._require_client()
        logger.info("Fetching overview for %d messages", len(uids))
        return {"messages": client.get_messages_info(uids)}

    def mailbox_mark(self, *, uids: list[int], action: str) -> dict:
        if action not in MARK_ACTIONS:
            raise MailboxError(f"Unknown action {action!r}, expected one of {', '.join(MARK_ACTIONS)}")
        client = self._require_client()
        getattr(client, f"mark_as_{action}")(uids)
        logger.info("Marked %d messages as %s", len(uids), action)
        return {"success": True, "uids": uids, "action": action}

    def mailbox_delete(self, *, uids: list[int]) -> dict:
        client = self._require_client()
        client.delete_messages(uids)
        logger.info("Flagged %d messages as deleted", len(uids))
        return {"success": True, "uids": uids}

    def mailbox_move(self, *, uids: list[int], folder: str) -> dict:
        client = self._require_client()
        client.move_messages(uids, folder)
        logger.info("Moved %d messages to %s", len(uids), folder)
        return {"success": True, "uids": uids, "folder": folder}

    def mailbox_expunge(self) -> dict:
        self._require_client().expunge()
        return {"success": True}

    def mailbox_quota(self) -> dict:
        return {"quota": self._require_client().get_quota()}

    def mailbox_list_folders(self, *, pattern: str = "*") -> dict:
        client = self._require_client()
        logger.info("Listing folders")
        return {"folders": client.list_folders(pattern)}

    def mailbox_status(self) -> dict:
        return {"status": self._require_client().mailbox_status()}

    def mailbox_connection_status(self) -> ConnectionStatus:
        """Always answers, even before connect."""
        if self._client is None:
            return ConnectionStatus(
                connected=False,
                server="",
                folder="",
                uptime_seconds=0,
                reconnections=0,
            )
        return self._client.get_status()

    def _serialize_result(self, result: Any) -> str:
        """Serialize result to JSON string."""

        def default_serializer(obj: Any) -> Any:
            if hasattr(obj, "__dataclass_fields__"):
                return asdict(obj)
            if hasattr(obj, "value"):  # Enum
                return obj.value
            if isinstance(obj, bytes):
                return base64.b64encode(obj).decode("ascii")
            raise TypeError(f"Cannot serialize {type(obj)}")

        return json.dumps(result, default=default_serializer, indent=2)

    async def run(self) -> None:
        """Run the MCP server."""
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(
                read_stream, write_stream, self._server.create_initialization_options()
            )


# Singleton for process lifetime
_server_instance: MailboxMCPServer | None = None


def get_server() -> MailboxMCPServer:
    """Get or create the server singleton."""
    global _server_instance
    if _server_instance is None:
        _server_instance = MailboxMCPServer()
    return _server_instance


def create_server() -> MailboxMCPServer:
    """Create a new server instance (for testing)."""
    return MailboxMCPServer()
