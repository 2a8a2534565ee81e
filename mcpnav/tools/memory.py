"""Conversation memory — servers and tools announced in earlier assistant turns."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

_ANNOUNCEMENT_RE = re.compile(r"Available tools at (https?://[^\s]+)", re.IGNORECASE)
_TOOL_LINE_RE = re.compile(r"- \*\*([^*]+)\*\*:")


@dataclass(frozen=True)
class ConversationTurn:
    role: str  # "user" | "assistant"
    text: str
    timestamp: Optional[Any] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationTurn":
        """Accept both {role, text} and the chat widget's {type, content} shape."""
        role = data.get("role") or data.get("type") or "user"
        text = data.get("text")
        if text is None:
            text = data.get("content") or ""
        return cls(role=str(role), text=str(text), timestamp=data.get("timestamp"))


@dataclass
class DiscoveredServer:
    url: str
    tool_names: List[str] = field(default_factory=list)
    discovered_at: Optional[Any] = None


def parse_transcript(raw: Optional[Iterable[Mapping[str, Any]]]) -> List[ConversationTurn]:
    return [ConversationTurn.from_dict(item) for item in (raw or []) if isinstance(item, Mapping)]


def scan_transcript(turns: Iterable[ConversationTurn]) -> Dict[str, DiscoveredServer]:
    """Map server URL → tools announced there. A later announcement for the same URL wins."""
    servers: Dict[str, DiscoveredServer] = {}
    for turn in turns:
        if turn.role != "assistant" or not turn.text:
            continue
        announcements = list(_ANNOUNCEMENT_RE.finditer(turn.text))
        for i, match in enumerate(announcements):
            # Bullets belong to the announcement above them, up to the next one
            end = announcements[i + 1].start() if i + 1 < len(announcements) else len(turn.text)
            url = match.group(1).rstrip(".,;:)")
            tool_names = [name.strip() for name in _TOOL_LINE_RE.findall(turn.text, match.end(), end)]
            if not tool_names:
                continue
            servers[url] = DiscoveredServer(url=url, tool_names=tool_names, discovered_at=turn.timestamp)
            logger.info(f"Extracted discovered server from conversation: {url} with tools: {', '.join(tool_names)}")
    return servers


def find_server_for_tool(tool_name: str, servers: Mapping[str, DiscoveredServer]) -> Optional[str]:
    for url, server in servers.items():
        if tool_name in server.tool_names:
            logger.info(f"Found tool '{tool_name}' on server: {url}")
            return url
    return None


def format_transcript(turns: Iterable[ConversationTurn]) -> str:
    """Render the transcript as a prompt section ("" when empty)."""
    lines = []
    for turn in turns:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.text}")
    if not lines:
        return ""
    return "\n\nCONVERSATION HISTORY:\n" + "\n".join(lines) + "\n\n"
