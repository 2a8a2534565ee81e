"""Tool executor — resolve, authenticate and run MCP tools through the gateway."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from ..gateway import ErrorCategory, ResponsesGateway, UpstreamError, find_tool_listing
from ..session import RequestContext
from .credentials import ResolvedTool, find_caller_headers, resolve_tool
from .memory import scan_transcript
from .resolver import Resolution, ToolResolver
from .schema_cache import FunctionSchema, SchemaCache

logger = logging.getLogger(__name__)

LIST_TOOLS_INPUT = "List available tools"
EXAMPLE_EXECUTE = "/api/tools?tools=parallel_web_search&q=what's the weather in San Francisco"

_SCHEMA_TROUBLESHOOTING = [
    "Tool schema validation failed - the tool parameters don't match the expected schema",
    "This could be due to incomplete schema information during tool discovery",
    "Try using the tool with explicit parameters if you know the expected format",
    "The MCP server may need to provide more detailed schema information",
]
_SERVER_TROUBLESHOOTING = [
    "The MCP server is accessible and tools were discovered successfully",
    "This may be a temporary issue with the Responses API's remote MCP implementation",
    "Try again in a few moments",
    "Use the generated curl command to test the API directly",
    "Consider trying a different MCP server if the issue persists",
]


@dataclass
class ToolResult:
    ok: bool
    status: int = 200
    data: Any = None  # upstream response when ok, error payload otherwise
    resolved_tools: List[ResolvedTool] = field(default_factory=list)
    missing_credentials: Dict[str, List[str]] = field(default_factory=dict)
    category: Optional[str] = None
    upstream_calls: int = 0


def parse_tool_names(tools_param: Union[str, Sequence[str], None]) -> List[str]:
    if not tools_param:
        return []
    if isinstance(tools_param, str):
        tools_param = tools_param.split(",")
    return [name.strip() for name in tools_param if name and name.strip()]


class ToolExecutor:
    def __init__(self, resolver: ToolResolver, gateway: ResponsesGateway, schema_cache: SchemaCache):
        self.resolver = resolver
        self.gateway = gateway
        self.schema_cache = schema_cache

    # ── Resolution ───────────────────────────────────────────

    def _not_found(self, tool_name: str) -> ToolResult:
        return ToolResult(
            ok=False,
            status=404,
            category="not_found",
            data={
                "error": f"Tool '{tool_name}' not found in local registry, MCP registry, or is not a valid URL",
                "available_tools": self.resolver.registry.names(),
                "suggestion": (
                    f"Try searching the registry: /api/registry?search={quote(tool_name)}, "
                    "or provide a valid MCP server URL"
                ),
            },
        )

    async def resolve_all(
        self, tool_names: List[str], ctx: RequestContext
    ) -> Tuple[List[Resolution], Optional[ToolResult]]:
        """Resolve every name; the first miss aborts the whole batch."""
        discovered = scan_transcript(ctx.transcript)
        resolutions = []
        for name in tool_names:
            resolution = await self.resolver.resolve(name, discovered=discovered)
            if resolution is None:
                return [], self._not_found(name)
            resolutions.append(resolution)
        return resolutions, None

    def authenticate(self, resolution: Resolution, ctx: RequestContext) -> ResolvedTool:
        caller_headers = find_caller_headers(resolution.name, ctx.tool_headers)
        resolved = resolve_tool(resolution.descriptor, caller_headers)
        if resolved.missing_credentials:
            logger.warning(
                f"[{ctx.request_id}] Tool '{resolution.name}' has missing API keys: "
                f"{', '.join(resolved.missing_credentials)}"
            )
        return resolved

    # ── Execution ────────────────────────────────────────────

    def _shape_query(self, tool_name: str, resolved: ResolvedTool, query: str) -> str:
        """Rewrite bare "run X" / "execute X" instructions using the cached schema."""
        lowered = query.strip().lower()
        if not (lowered.startswith("run ") or lowered.startswith("execute ")):
            return query
        schema = self.schema_cache.find_function(tool_name, resolved.server_url, tool_name)
        if schema is None:
            return f"Use the {tool_name} tool with default settings"
        if not schema.parameter_names:
            return f"Use the {tool_name} tool without any parameters"
        return query

    async def execute(
        self,
        tools_param: Union[str, Sequence[str], None],
        query: Optional[str],
        ctx: RequestContext,
    ) -> ToolResult:
        tool_names = parse_tool_names(tools_param)
        if not tool_names:
            return ToolResult(ok=False, status=400, category="client_error", data={
                "error": "tools parameter is required",
                "example": EXAMPLE_EXECUTE,
                "available_tools": self.resolver.registry.names(),
            })
        if not query or not query.strip():
            return ToolResult(ok=False, status=400, category="client_error", data={
                "error": 'Query parameter "q" is required for execute mode',
                "example": EXAMPLE_EXECUTE,
                "available_tools": self.resolver.registry.names(),
            })

        resolutions, failure = await self.resolve_all(tool_names, ctx)
        if failure:
            return failure

        resolved_tools = [self.authenticate(resolution, ctx) for resolution in resolutions]
        missing = {tool.name: list(tool.missing_credentials) for tool in resolved_tools if tool.missing_credentials}
        payload = [tool.to_payload() for tool in resolved_tools]

        effective_query = query
        if len(tool_names) == 1:
            effective_query = self._shape_query(tool_names[0], resolved_tools[0], query)
            if effective_query != query:
                logger.info(f"[{ctx.request_id}] Modified query for tool execution: {effective_query}")

        calls = 0
        t0 = time.monotonic()
        try:
            calls += 1
            response = await self.gateway.create_response(ctx.api_key, ctx.model, effective_query, payload)
        except UpstreamError as error:
            logger.error(f"[{ctx.request_id}] Tool execution error: {error.describe()}")
            if error.category == ErrorCategory.SCHEMA_MISMATCH and len(tool_names) == 1:
                logger.info(f"[{ctx.request_id}] Attempting retry with simplified parameters...")
                try:
                    calls += 1
                    response = await self.gateway.create_response(
                        ctx.api_key, ctx.model, f"Use the {tool_names[0]} tool", payload
                    )
                except UpstreamError as retry_error:
                    logger.error(f"[{ctx.request_id}] Retry also failed: {retry_error.message}")
                else:
                    return ToolResult(ok=True, data=response, resolved_tools=resolved_tools,
                                      missing_credentials=missing, upstream_calls=calls)
            result = self._classify_failure(error, resolved_tools)
            result.missing_credentials = missing
            result.upstream_calls = calls
            return result

        logger.info(f"[{ctx.request_id}] Executed {', '.join(tool_names)} in {time.monotonic() - t0:.1f}s")
        return ToolResult(ok=True, data=response, resolved_tools=resolved_tools,
                          missing_credentials=missing, upstream_calls=calls)

    def _classify_failure(self, error: UpstreamError, resolved_tools: List[ResolvedTool]) -> ToolResult:
        if error.category == ErrorCategory.AUTHENTICATION:
            return ToolResult(ok=False, status=401, category=error.category.value, resolved_tools=resolved_tools, data={
                "error": "Authentication failed",
                "details": error.describe(),
                "suggestion": (
                    "Provide a valid API key for the tool via toolHeaders or its environment variable."
                    if error.is_tool_auth
                    else "Check the Groq API key sent in the Authorization header or GROQ_API_KEY."
                ),
            })

        mcp_servers = [tool.server_url for tool in resolved_tools if tool.type == "mcp"]
        if mcp_servers and error.category in (
            ErrorCategory.SCHEMA_MISMATCH, ErrorCategory.TOOL_VALIDATION, ErrorCategory.BAD_REQUEST
        ):
            return ToolResult(ok=False, status=400, category=error.category.value, resolved_tools=resolved_tools, data={
                "error": "MCP Tool Schema Validation Failed",
                "details": error.describe(),
                "mcp_servers": mcp_servers,
                "suggestion": (
                    "The MCP tool was found but there's a parameter schema mismatch. This usually means "
                    "the tool expects different parameters than what was provided."
                ),
                "troubleshooting": _SCHEMA_TROUBLESHOOTING,
            })
        if mcp_servers and error.category == ErrorCategory.SERVER:
            return ToolResult(ok=False, status=500, category=error.category.value, resolved_tools=resolved_tools, data={
                "error": "MCP Server Execution Failed",
                "details": error.describe(),
                "mcp_servers": mcp_servers,
                "suggestion": (
                    "The remote MCP server was reached but execution failed server-side. "
                    "The server discovery worked, but execution failed."
                ),
                "troubleshooting": _SERVER_TROUBLESHOOTING,
            })

        status = error.status if error.status and error.status >= 400 else 500
        return ToolResult(ok=False, status=status, category=error.category.value, resolved_tools=resolved_tools,
                          data={"error": error.message, "details": error.describe()})

    # ── Listing ──────────────────────────────────────────────

    async def list_tools(
        self,
        tools_param: Union[str, Sequence[str], None],
        ctx: RequestContext,
        refresh: bool = False,
    ) -> ToolResult:
        """List the functions each named server exposes.

        A cached entry (including an empty one) answers without a network
        call unless ``refresh`` forces rediscovery. Live listings overwrite
        the cache.
        """
        tool_names = parse_tool_names(tools_param)
        if not tool_names:
            return ToolResult(ok=True, data={
                "available_tools": self.resolver.registry.names(),
                "examples": {
                    "list_all": "/api/tools?mode=list",
                    "list_specific": "/api/tools?tools=parallel_web_search&mode=list",
                    "execute": "/api/tools?tools=parallel_web_search&q=what's the weather in SF",
                },
            })

        resolutions, failure = await self.resolve_all(tool_names, ctx)
        if failure:
            return failure

        schemas = []
        calls = 0
        for resolution in resolutions:
            descriptor = resolution.descriptor
            entry: Dict[str, Any] = {
                "tool_name": resolution.name,
                "server_label": descriptor.server_label,
                "server_url": descriptor.server_url,
                "status": "ok",
                "tools": [],
                "tool_count": 0,
                "source": resolution.source.value,
            }
            if descriptor.registry_info:
                entry["registry_info"] = descriptor.registry_info.to_dict()

            resolved = self.authenticate(resolution, ctx)
            if resolved.missing_credentials:
                entry["status"] = "inaccessible"
                entry["reason"] = f"Missing API keys: {', '.join(resolved.missing_credentials)}"
                schemas.append(entry)
                continue

            cached = self.schema_cache.get(resolution.name, descriptor.server_url) if not refresh else None
            if cached is not None:
                functions = cached
                entry["cached"] = True
            else:
                try:
                    calls += 1
                    functions, label = await self._discover_live(resolution.name, resolved, ctx)
                except UpstreamError as error:
                    if error.category == ErrorCategory.AUTHENTICATION:
                        entry["status"] = "inaccessible"
                        entry["reason"] = "Authentication failed - check API keys"
                    else:
                        entry["status"] = "error"
                        entry["reason"] = f"Failed to get schema: {error.message}"
                    schemas.append(entry)
                    continue
                if label:
                    entry["server_label"] = label

            entry["tools"] = [function.to_dict() for function in functions]
            entry["tool_count"] = len(functions)
            schemas.append(entry)

        return ToolResult(ok=True, data={"mode": "list", "schemas": schemas}, upstream_calls=calls)

    async def _discover_live(
        self, tool_name: str, resolved: ResolvedTool, ctx: RequestContext
    ) -> Tuple[List[FunctionSchema], Optional[str]]:
        response = await self.gateway.create_response(ctx.api_key, ctx.model, LIST_TOOLS_INPUT, [resolved.to_payload()])
        listing = find_tool_listing(response)
        if listing is None:
            logger.info(f"[{ctx.request_id}] No tools discovered for {tool_name}")
            self.schema_cache.set(tool_name, resolved.server_url, [])
            return [], None

        functions = [FunctionSchema.from_listing(item) for item in listing.get("tools") or [] if isinstance(item, dict)]
        self.schema_cache.set(tool_name, resolved.server_url, functions)
        logger.info(
            f"[{ctx.request_id}] Cached tool schemas for {tool_name}: "
            + ", ".join(f"{f.name} ({', '.join(f.parameter_names) or 'no params'})" for f in functions)
        )
        return functions, listing.get("server_label")
