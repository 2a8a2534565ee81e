"""LLM router — classifies a query into one of four intents via a constrained chat call."""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .gateway import ResponsesGateway
from .session import RequestContext
from .tools.memory import format_transcript

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    INTROSPECTION = "introspection"
    DIRECT_RESPONSE = "direct_response"
    TOOL_EXECUTION = "tool_execution"
    CURL_GENERATION = "curl_generation"


@dataclass
class RoutingDecision:
    intent: Intent
    reasoning: str
    prompt: Optional[str] = None


ROUTER_PROMPT = """You are a smart routing assistant that determines how to handle user queries in an MCP Navigation system.

AVAILABLE RESPONSE TYPES:
1. "introspection" - User wants to know about available tools/models/system capabilities
2. "direct_response" - Question can be answered with general knowledge, no external tools needed
3. "tool_execution" - User needs external tools/APIs to get current data or perform actions
4. "curl_generation" - User wants to see curl command examples for using MCP tools with the Responses API

EXAMPLES:
- "show all tools" → introspection
- "what tools are available in garden.stanislav.svelte-llm/svelte-llm-mcp" → introspection
- "list tools from ai.waystation/gmail MCP server" → introspection
- "what functions does com.apple-rag/mcp-server have" → introspection
- "check what's available at https://example.com/mcp" → introspection
- "what tools are at https://my-server.com/mcp" → introspection
- "how do I use git?" → direct_response
- "explain machine learning" → direct_response
- "what's the weather today?" → tool_execution
- "search for recent papers on AI" → tool_execution
- "show me a curl example for github tool" → curl_generation
- "generate a curl command for huggingface MCP tool" → curl_generation
- "Show me how to use the GitHub MCP tool" → curl_generation
- "how to use the [tool name] MCP tool" → curl_generation

SPECIAL CASES:
- When user provides a URL (http/https) and asks to "check", "list", "available", "what's at", etc. → introspection
- URLs should be treated as requests to discover what's available at that endpoint

NOTE: curl_generation is specifically for MCP tool usage with the Responses API (/openai/v1/responses endpoint), not general curl examples or the Chat Completions API."""

ROUTING_SCHEMA = {
    "type": "json_schema",
    "json_schema": {
        "name": "routing_decision",
        "schema": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": [intent.value for intent in Intent]},
                "reasoning": {
                    "type": "string",
                    "description": "Brief explanation of why this response type was chosen",
                },
                "prompt": {
                    "type": "string",
                    "description": "For direct_response type only: prompt for answering directly with general knowledge",
                },
            },
            "required": ["type", "reasoning"],
            "additionalProperties": False,
        },
    },
}


def direct_prompt(query: str, context: str = "") -> str:
    return (
        f"You are a helpful AI assistant. {context} Answer the user's question: '{query}' "
        "using your general knowledge. Be conversational and helpful."
    )


def parse_decision(raw: str, query: str, context: str = "") -> Optional[RoutingDecision]:
    """Decision from the router's JSON reply, or None when it is unusable."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not data.get("type") or not data.get("reasoning"):
        return None
    try:
        intent = Intent(data["type"])
    except ValueError:
        return None

    prompt = data.get("prompt") or None
    if intent == Intent.DIRECT_RESPONSE and not prompt:
        prompt = direct_prompt(query, context)
    return RoutingDecision(intent=intent, reasoning=str(data["reasoning"]), prompt=prompt)


async def plan_intent(query: str, ctx: RequestContext, gateway: ResponsesGateway) -> RoutingDecision:
    """Classify the query. Never raises: any failure falls back to tool execution."""
    context = format_transcript(ctx.transcript)
    messages = [
        {"role": "system", "content": ROUTER_PROMPT},
        {
            "role": "user",
            "content": f'{context}CURRENT USER QUERY: "{query}"\n\n'
                       "Analyze this query and determine the appropriate response type.",
        },
    ]

    try:
        raw = await gateway.complete_chat(ctx.api_key, ctx.model, messages, response_format=ROUTING_SCHEMA)
    except Exception as e:
        logger.error(f"[{ctx.request_id}] LLM router error: {e}")
        return RoutingDecision(Intent.TOOL_EXECUTION, "router error, defaulting to tool execution")

    decision = parse_decision(raw, query, context)
    if decision is None:
        logger.warning(f"[{ctx.request_id}] Unusable routing decision: {raw[:200]!r}")
        return RoutingDecision(Intent.TOOL_EXECUTION, "routing failed, defaulting to tool execution")

    logger.info(f"[{ctx.request_id}] Router decision for {query!r}: {decision.intent.value} ({decision.reasoning})")
    return decision
