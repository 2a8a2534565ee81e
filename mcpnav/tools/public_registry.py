"""Client for the public MCP registry: look up third-party servers by name."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from .registry import HeaderValue, LiteralValue, RegistryInfo, ToolDescriptor

logger = logging.getLogger(__name__)


@dataclass
class RegistryPage:
    servers: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def normalize_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name.lower())


def _unwrap(entry: Dict[str, Any]) -> Dict[str, Any]:
    # Newer catalog versions nest the server under "server" next to "_meta"
    inner = entry.get("server")
    return inner if isinstance(inner, dict) else entry


def has_remote(server: Dict[str, Any]) -> bool:
    return bool(server.get("remotes"))


def pick_remote(server: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Prefer a streamable-http remote, else the first one."""
    remotes = server.get("remotes") or []
    for remote in remotes:
        if remote.get("type") == "streamable-http":
            return remote
    return remotes[0] if remotes else None


def secret_env_name(header_name: str) -> str:
    return header_name.upper().replace("-", "_")


def descriptor_from_server(server: Dict[str, Any], name: Optional[str] = None) -> Optional[ToolDescriptor]:
    """Convert a catalog entry; None when it has no remote endpoint."""
    remote = pick_remote(server)
    if not remote or not remote.get("url"):
        return None

    headers: Dict[str, HeaderValue] = {}
    for header in remote.get("headers") or []:
        header_name = header.get("name")
        if not header_name:
            continue
        if header.get("isSecret"):
            # Catalog entries are untrusted: secrets come only from caller headers
            headers[header_name] = LiteralValue("")
        elif header.get("value"):
            headers[header_name] = LiteralValue(header["value"])

    repository = server.get("repository") or {}
    return ToolDescriptor(
        name=name or server.get("name", ""),
        server_label=server.get("name", ""),
        server_url=remote["url"],
        headers=headers,
        require_approval="never",
        registry_info=RegistryInfo(
            name=server.get("name", ""),
            description=server.get("description") or "",
            version=server.get("version") or "",
            repository=repository.get("url", "") if isinstance(repository, dict) else "",
        ),
    )


def suggested_config(server: Dict[str, Any]) -> Dict[str, Any]:
    """Registry-shaped config suggestion, used by the registry endpoint."""
    descriptor = descriptor_from_server(server)
    if descriptor is None:
        return {
            "note": "No remote URL found - this server may require local installation",
            "packages": server.get("packages"),
        }
    headers = {}
    for header in (pick_remote(server) or {}).get("headers") or []:
        header_name = header.get("name")
        if not header_name:
            continue
        if header.get("isSecret"):
            headers[header_name] = f"${{{secret_env_name(header_name)}}}"
        elif header.get("value"):
            headers[header_name] = header["value"]
    safe_name = re.sub(r"[^a-zA-Z0-9_]", "_", descriptor.server_label)
    return {
        safe_name: {
            "type": "mcp",
            "server_label": descriptor.server_label,
            "server_url": descriptor.server_url,
            "headers": headers,
            "require_approval": descriptor.require_approval,
        }
    }


class PublicRegistryClient:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.mcp_registry_url
        self.timeout = timeout if timeout is not None else settings.registry_timeout_s
        self._transport = transport

    async def fetch_page(self, limit: Optional[int] = None, cursor: Optional[str] = None) -> RegistryPage:
        """GET the catalog. Raises httpx.HTTPError on transport/status failures."""
        params: Dict[str, Any] = {}
        if limit:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(self.url, params=params or None)
            resp.raise_for_status()
            data = resp.json()

        servers = [_unwrap(entry) for entry in data.get("servers") or [] if isinstance(entry, dict)]
        return RegistryPage(servers=servers, metadata=data.get("metadata") or {})

    async def remote_servers(self, limit: Optional[int] = None, cursor: Optional[str] = None) -> RegistryPage:
        """Catalog entries that advertise at least one remote endpoint."""
        page = await self.fetch_page(limit=limit, cursor=cursor)
        page.servers = [server for server in page.servers if has_remote(server)]
        return page

    async def lookup(self, tool_name: str) -> Optional[ToolDescriptor]:
        """Exact, then fuzzy name match. Failures are logged and treated as no match."""
        try:
            page = await self.remote_servers()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"MCP registry lookup error: {e}")
            return None

        server = match_server(tool_name, page.servers)
        if server is None:
            return None
        descriptor = descriptor_from_server(server, name=tool_name)
        if descriptor:
            logger.info(f"Resolved '{tool_name}' via MCP registry entry '{server.get('name')}'")
        return descriptor

    async def search(self, term: str = "", limit: Optional[int] = None, cursor: Optional[str] = None) -> RegistryPage:
        page = await self.remote_servers(limit=limit, cursor=cursor)
        if term:
            needle = term.lower()
            page.servers = [
                server for server in page.servers
                if needle in (server.get("name") or "").lower()
                or needle in (server.get("description") or "").lower()
            ]
        return page


def match_server(tool_name: str, servers: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First exact name match, else first fuzzy match, in catalog order."""
    for server in servers:
        if server.get("name") == tool_name:
            return server

    wanted = normalize_name(tool_name)
    if not wanted.strip("_"):
        return None
    for server in servers:
        candidate = normalize_name(server.get("name") or "")
        if not candidate:
            continue
        if candidate == wanted or wanted in candidate or candidate in wanted:
            return server
    return None
