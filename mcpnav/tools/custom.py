"""Descriptors for MCP servers given directly by URL."""
import logging
from typing import Optional
from urllib.parse import urlparse

from .registry import ToolDescriptor, ToolMeta

logger = logging.getLogger(__name__)


def is_url_tool(value: str) -> bool:
    """True for absolute http/https URLs."""
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def descriptor_from_url(url: str, name: Optional[str] = None) -> Optional[ToolDescriptor]:
    if not is_url_tool(url):
        logger.warning(f"Invalid URL provided: {url}")
        return None
    hostname = urlparse(url.strip()).hostname
    return ToolDescriptor(
        name=name or url,
        server_label=f"Custom MCP Server ({hostname})",
        server_url=url.strip(),
        headers={},
        require_approval="never",
        meta=ToolMeta(description=f"Custom MCP server at {hostname}"),
    )
