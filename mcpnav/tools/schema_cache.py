"""Process-lifetime cache of functions discovered on remote MCP servers."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionSchema:
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_listing(cls, item: Dict[str, Any]) -> "FunctionSchema":
        """Build from an ``mcp_list_tools`` entry; tolerates both schema key spellings."""
        name = item.get("name", "")
        schema = item.get("input_schema") or item.get("inputSchema") or {"type": "object", "properties": {}}
        return cls(
            name=name,
            description=item.get("description") or f"{name} function",
            input_schema=schema,
        )

    @property
    def parameter_names(self) -> List[str]:
        return list((self.input_schema or {}).get("properties") or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class SchemaCache:
    """Keyed by (tool name, server url). Last write wins; nothing is evicted.

    An empty list is a real entry: discovery ran and found nothing.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str], List[FunctionSchema]] = {}

    def get(self, tool_name: str, server_url: str) -> Optional[List[FunctionSchema]]:
        entry = self._entries.get((tool_name, server_url))
        return None if entry is None else list(entry)

    def set(self, tool_name: str, server_url: str, functions: Iterable[FunctionSchema]):
        self._entries[(tool_name, server_url)] = list(functions)
        logger.debug(f"Schema cache set: {tool_name} @ {server_url} ({len(self._entries[(tool_name, server_url)])} functions)")

    def find_function(self, tool_name: str, server_url: str, function_name: str) -> Optional[FunctionSchema]:
        for function in self._entries.get((tool_name, server_url), []):
            if function.name == function_name:
                return function
        return None

    def clear(self):
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
