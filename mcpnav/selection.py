"""Selection engine — ask the model to pick 1-3 tools and phrase the execution query."""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from .gateway import ResponsesGateway
from .session import RequestContext
from .tools.memory import DiscoveredServer, format_transcript

logger = logging.getLogger(__name__)

MAX_SELECTED_TOOLS = 3
SELECTION_TEMPERATURE = 0.1
_REGISTRY_SOURCES = ("local", "discovered", "public")


class SelectionParseError(ValueError):
    """The selection reply held no parseable JSON object."""

    def __init__(self, message: str, raw_reply: str):
        super().__init__(message)
        self.raw_reply = raw_reply


@dataclass
class CandidateTool:
    name: str
    description: str
    source: str  # "local" | "discovered" | "public"
    use_cases: List[str] = field(default_factory=list)
    server_url: str = ""


@dataclass
class SelectedTool:
    name: str
    reason: str = ""
    registry_source: str = "local"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "reason": self.reason, "registry": self.registry_source}


@dataclass
class SelectionResult:
    selected_tools: List[SelectedTool] = field(default_factory=list)
    execution_query: str = ""

    @property
    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.selected_tools]


def build_selection_prompt(
    query: str,
    candidates: Iterable[CandidateTool],
    discovered: Mapping[str, DiscoveredServer],
    context: str = "",
) -> str:
    candidates = list(candidates)
    local = [c for c in candidates if c.source == "local"]
    found = [c for c in candidates if c.source == "discovered"]
    public = [c for c in candidates if c.source == "public"]

    discovered_context = ""
    if discovered:
        discovered_context = "\nDISCOVERED MCP SERVERS FROM CONVERSATION:\n"
        for url, server in discovered.items():
            discovered_context += f"- {url}: {', '.join(server.tool_names)}\n"
        discovered_context += (
            "\nNOTE: You can use any of these discovered tools by name, "
            "even if they're not in the main registries below.\n"
        )

    local_lines = "\n".join(f"- {c.name}: {c.description} ({', '.join(c.use_cases)})" for c in local)
    found_lines = "\n".join(f"- {c.name}: Available from {c.server_url}" for c in found) or "(none)"
    public_lines = "\n".join(f"- {c.name}: {c.description}" for c in public)

    return f"""You are an AI assistant that helps users select the most appropriate MCP (Model Context Protocol) tools for their queries.{context}{discovered_context}

CURRENT USER QUERY: "{query}"

AVAILABLE TOOLS:

LOCAL REGISTRY:
{local_lines}

DISCOVERED FROM CONVERSATION:
{found_lines}

PUBLIC REGISTRY (sample of available tools):
{public_lines}

YOUR TASK:
1. Analyze the user query and determine which tool(s) would be most helpful
2. Select 1-3 most relevant tools (prefer LOCAL tools, then DISCOVERED tools, then PUBLIC tools)
3. Respond with ONLY a JSON object in this exact format:

{{
  "selected_tools": [
    {{
      "name": "tool_name",
      "reason": "why this tool is relevant",
      "registry": "local" or "discovered" or "public"
    }}
  ],
  "execution_query": "natural language query to send to the selected tools - DO NOT format as function calls"
}}

IMPORTANT: The execution_query should be natural language that describes what the user wants, NOT a function call format. For example:
- Good: "what's the weather in San Francisco"
- Bad: "web_search_preview(query='weather in SF')"

Be concise and practical. Choose tools that can actually help answer the user's question."""


def parse_selection(raw: str) -> SelectionResult:
    """Parse the span from the first "{" to the last "}". Raises SelectionParseError."""
    start, end = raw.find("{"), raw.rfind("}")
    if start == -1 or end <= start:
        raise SelectionParseError("No JSON found in AI response", raw)
    try:
        data: Any = json.loads(raw[start:end + 1])
    except ValueError as e:
        raise SelectionParseError(str(e), raw) from e
    if not isinstance(data, dict):
        raise SelectionParseError("AI response JSON is not an object", raw)

    selected = []
    for item in data.get("selected_tools") or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        source = str(item.get("registry") or "local").lower()
        selected.append(SelectedTool(
            name=str(item["name"]),
            reason=str(item.get("reason") or ""),
            registry_source=source if source in _REGISTRY_SOURCES else "public",
        ))

    if len(selected) > MAX_SELECTED_TOOLS:
        logger.warning(f"AI selected {len(selected)} tools, keeping the first {MAX_SELECTED_TOOLS}")
        selected = selected[:MAX_SELECTED_TOOLS]

    return SelectionResult(selected_tools=selected, execution_query=str(data.get("execution_query") or ""))


async def select_tools(
    query: str,
    candidates: Iterable[CandidateTool],
    discovered: Mapping[str, DiscoveredServer],
    ctx: RequestContext,
    gateway: ResponsesGateway,
) -> SelectionResult:
    """One chat call, no retry. UpstreamError and SelectionParseError propagate."""
    prompt = build_selection_prompt(query, candidates, discovered, format_transcript(ctx.transcript))
    raw = await gateway.complete_chat(
        ctx.api_key,
        ctx.model,
        [{"role": "user", "content": prompt}],
        temperature=SELECTION_TEMPERATURE,
    )
    result = parse_selection(raw)
    logger.info(
        f"[{ctx.request_id}] Selected tools: {', '.join(result.tool_names) or '(none)'} "
        f"query={result.execution_query!r}"
    )
    return result
