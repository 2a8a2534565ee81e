"""Tool resolution chain — turn a requested tool name into a descriptor.

Order is fixed: local registry, literal URL, servers announced earlier in the
conversation, public registry. The public registry is the only step that
touches the network.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

from .custom import descriptor_from_url, is_url_tool
from .memory import ConversationTurn, DiscoveredServer, find_server_for_tool, scan_transcript
from .public_registry import PublicRegistryClient
from .registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)


class ToolSource(str, Enum):
    LOCAL = "local_registry"
    URL = "dynamic_url"
    CONVERSATION = "conversation"
    PUBLIC = "mcp_registry"


@dataclass(frozen=True)
class Resolution:
    name: str
    descriptor: ToolDescriptor
    source: ToolSource


class ToolResolver:
    def __init__(self, registry: ToolRegistry, public_registry: PublicRegistryClient):
        self.registry = registry
        self.public_registry = public_registry

    async def resolve(
        self,
        tool_name: str,
        transcript: Iterable[ConversationTurn] = (),
        discovered: Optional[Dict[str, DiscoveredServer]] = None,
    ) -> Optional[Resolution]:
        """Return the first match along the chain, or None.

        ``discovered`` lets a caller resolving several names scan the
        transcript once.
        """
        descriptor = self.registry.get(tool_name)
        if descriptor:
            return Resolution(tool_name, descriptor, ToolSource.LOCAL)

        if is_url_tool(tool_name):
            descriptor = descriptor_from_url(tool_name)
            if descriptor:
                logger.info(f"Created dynamic tool config from URL: {tool_name}")
                return Resolution(tool_name, descriptor, ToolSource.URL)

        if discovered is None:
            discovered = scan_transcript(transcript)
        server_url = find_server_for_tool(tool_name, discovered)
        if server_url:
            descriptor = descriptor_from_url(server_url, name=tool_name)
            if descriptor:
                logger.info(f"Using tool '{tool_name}' from conversation-discovered server: {server_url}")
                return Resolution(tool_name, descriptor, ToolSource.CONVERSATION)

        descriptor = await self.public_registry.lookup(tool_name)
        if descriptor:
            logger.info(f"Dynamically loaded tool '{tool_name}' from MCP registry")
            return Resolution(tool_name, descriptor, ToolSource.PUBLIC)

        logger.warning(f"Tool '{tool_name}' not found in any registry")
        return None
