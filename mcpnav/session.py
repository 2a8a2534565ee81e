"""Per-request state passed through routing, selection and execution."""
import uuid
from dataclasses import dataclass, field
from typing import Dict, List

from .tools.memory import ConversationTurn


@dataclass
class RequestContext:
    """Everything one inbound query needs; discarded when the request ends.

    ``tool_headers`` maps a tool key to caller-supplied headers for it, e.g.
    ``{"github": {"Authorization": "Bearer ..."}}``.
    """
    api_key: str
    model: str
    tool_headers: Dict[str, Dict[str, str]] = field(default_factory=dict)
    transcript: List[ConversationTurn] = field(default_factory=list)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def with_tool_headers(self, tool_headers: Dict[str, Dict[str, str]]) -> "RequestContext":
        return RequestContext(
            api_key=self.api_key,
            model=self.model,
            tool_headers=tool_headers,
            transcript=self.transcript,
            request_id=self.request_id,
        )
