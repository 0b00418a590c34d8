"""
Mailbox MCP Server
==================

IMAP mailbox access for AI agents: fetches messages, walks their MIME
structure and returns decoded text, HTML and attachments.
"""

__version__ = "0.1.0"

from src.mailbox_mcp.config import MailboxConfig, load_config
from src.mailbox_mcp.credentials import Credentials, retrieve_credentials
from src.mailbox_mcp.imap_client import MailboxClient
from src.mailbox_mcp.server import MailboxMCPServer, create_server, get_server

__all__ = [
    "MailboxMCPServer",
    "get_server",
    "create_server",
    "MailboxClient",
    "MailboxConfig",
    "load_config",
    "Credentials",
    "retrieve_credentials",
]
