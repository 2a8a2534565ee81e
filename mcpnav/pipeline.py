"""Query pipeline — route a natural-language query and carry out the chosen intent.

    query → credential extraction → custom URL fast path → router
          → introspection | direct answer | example command | selection → execution

Every branch returns a plain JSON-ready dict; upstream and parse failures are
turned into error payloads here and never escape to the HTTP layer.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, settings
from .curl import build_curl_command, redact_payload
from .gateway import ResponsesGateway, UpstreamError, extract_output_text
from .llm import Intent, RoutingDecision, plan_intent
from .selection import CandidateTool, SelectionParseError, SelectionResult, select_tools
from .session import RequestContext
from .tools.credentials import extract_query_credentials, resolve_tool, strip_query_credentials
from .tools.custom import descriptor_from_url
from .tools.executor import ToolExecutor
from .tools.memory import DiscoveredServer, format_transcript, scan_transcript
from .tools.public_registry import PublicRegistryClient, pick_remote
from .tools.registry import ToolRegistry, default_registry
from .tools.resolver import ToolResolver
from .tools.router import detect_custom_urls, find_mentioned_tool, is_listing_request, route
from .tools.schema_cache import SchemaCache

logger = logging.getLogger(__name__)

INTROSPECTION_FALLBACK = "Unable to generate response about available tools/models."
DIRECT_FALLBACK = "Unable to generate direct response."
DEFAULT_EXECUTION_QUERY = "Execute selected tools"


class Navigator:
    """Owns the process-wide pieces: registry, gateway, public registry client, schema cache."""

    def __init__(
        self,
        registry: Optional[ToolRegistry] = None,
        gateway: Optional[ResponsesGateway] = None,
        public_registry: Optional[PublicRegistryClient] = None,
        schema_cache: Optional[SchemaCache] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or settings
        self.registry = registry if registry is not None else default_registry()
        self.gateway = gateway or ResponsesGateway(self.config.groq_base_url)
        self.public_registry = public_registry or PublicRegistryClient(
            self.config.mcp_registry_url, self.config.registry_timeout_s
        )
        self.schema_cache = schema_cache if schema_cache is not None else SchemaCache()
        self.resolver = ToolResolver(self.registry, self.public_registry)
        self.executor = ToolExecutor(self.resolver, self.gateway, self.schema_cache)

    # ── Entry point ──────────────────────────────────────────

    async def select(self, query: str, ctx: RequestContext, mode: str = "execute") -> Dict[str, Any]:
        extracted = extract_query_credentials(query)
        if extracted:
            logger.info(f"[{ctx.request_id}] Extracted API keys for tools: {', '.join(extracted)}")
        # Caller-supplied headers win over ones found in the query text
        ctx = ctx.with_tool_headers({**extracted, **ctx.tool_headers})

        custom_urls = detect_custom_urls(query)
        if custom_urls:
            logger.info(f"[{ctx.request_id}] Detected custom MCP URLs: {', '.join(custom_urls)}")
            if is_listing_request(query):
                return await self._describe_custom_server(custom_urls[0], ctx)

        cleaned = strip_query_credentials(query) or query

        try:
            decision = await plan_intent(cleaned, ctx, self.gateway)
            if decision.intent == Intent.INTROSPECTION:
                return await self._introspect(cleaned, ctx)
            if decision.intent == Intent.DIRECT_RESPONSE:
                return await self._answer_directly(decision, ctx)
            if decision.intent == Intent.CURL_GENERATION:
                example = self._curl_example(cleaned, ctx)
                if example is not None:
                    return example

            selection = await self._select(cleaned, custom_urls, ctx)
            if not selection.selected_tools:
                return {"error": "No tools selected by AI", "selected_tools": [], "status_code": 400}
            if mode == "curl":
                return await self._curl_for_selection(selection, ctx)
            return await self._execute_selection(selection, ctx)

        except SelectionParseError as e:
            logger.error(f"[{ctx.request_id}] Failed to parse AI tool selection: {e}")
            return {
                "error": "Failed to parse AI tool selection",
                "ai_response": e.raw_reply,
                "parse_error": str(e),
                "status_code": 502,
            }
        except UpstreamError as e:
            logger.error(f"[{ctx.request_id}] AI tool selection error: {e.describe()}")
            return {"error": f"AI tool selection failed: {e.message}", "status_code": 500}

    # ── Custom URL fast path ─────────────────────────────────

    async def _describe_custom_server(self, url: str, ctx: RequestContext) -> Dict[str, Any]:
        logger.info(f"[{ctx.request_id}] Direct tool listing for custom URL: {url}")
        result = await self.executor.list_tools([url], ctx)
        schemas = (result.data or {}).get("schemas") or []
        if not result.ok or not schemas:
            reason = (result.data or {}).get("error", "Unknown error")
            return {"error": True, "response": f"Failed to connect to MCP server at {url}: {reason}", "custom_url": url}

        schema = schemas[0]
        text = f"## Available tools at {url}\n\n"
        if schema["tools"]:
            # Memory scanning reads these "- **name**:" lines back on later turns
            text += f"**Server:** {schema['server_label']}\n"
            text += f"**Total tools:** {schema['tool_count']}\n\n"
            text += "**Available tools:**\n"
            for tool in schema["tools"]:
                text += f"- **{tool['name']}**: {tool.get('description') or 'No description available'}\n"
        elif schema["status"] == "inaccessible":
            text += f"**Server is inaccessible**: {schema.get('reason')}\n\n"
            text += "This may be due to missing API keys or authentication requirements."
        elif schema["status"] == "error":
            text += f"**Could not list tools**: {schema.get('reason')}"
        else:
            text += "**No tools found** at this MCP server."

        return {
            "introspection": True,
            "response": text,
            "custom_url": url,
            "discovered_tools": schema["tools"],
            "tool_count": schema["tool_count"],
        }

    # ── Introspection ────────────────────────────────────────

    def _local_summaries(self) -> List[Dict[str, Any]]:
        summaries = []
        for descriptor in self.registry:
            functions = list(descriptor.meta.functions) if descriptor.meta else []
            summaries.append({
                "name": descriptor.name,
                "description": descriptor.description,
                "use_cases": list(descriptor.meta.use_cases) if descriptor.meta else [],
                "server_url": descriptor.server_url,
                "available_functions": functions,
                "function_count": len(functions),
            })
        return summaries

    async def _public_sample(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        """First N catalog entries with a remote; empty when the catalog is unreachable."""
        try:
            page = await self.public_registry.remote_servers()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[{ctx.request_id}] Failed to fetch public registry: {e}")
            return []
        sample = []
        for server in page.servers[:self.config.public_registry_sample]:
            remote = pick_remote(server) or {}
            sample.append({
                "name": server.get("name", ""),
                "description": server.get("description") or "MCP server",
                "server_url": remote.get("url", ""),
            })
        return sample

    async def _introspect(self, query: str, ctx: RequestContext) -> Dict[str, Any]:
        match = route(query)
        if match and match.kind == "server_listing":
            answer = await self._describe_named_server(match.target, ctx)
            if answer is not None:
                return answer

        local = self._local_summaries()
        public = await self._public_sample(ctx)
        prompt = self._introspection_prompt(query, ctx, local, public)
        response = await self.gateway.create_response(ctx.api_key, ctx.model, prompt, [])
        return {
            "introspection": True,
            "response": extract_output_text(response, INTROSPECTION_FALLBACK),
            "available_tools": local,
            "available_models": list(self.config.available_models),
            "public_registry_sample": public[:10],
        }

    async def _describe_named_server(self, server_name: str, ctx: RequestContext) -> Optional[Dict[str, Any]]:
        """Live listing for "tools from <server>" questions; None falls back to a general answer."""
        logger.info(f"[{ctx.request_id}] Detected specific MCP server query: {server_name!r}")
        result = await self.executor.list_tools([server_name], ctx)
        schemas = (result.data or {}).get("schemas") or []
        if not result.ok or not schemas:
            return None

        schema = schemas[0]
        if schema["tools"]:
            table = "\n".join(
                f"**{tool['name']}**: {tool.get('description') or 'No description available'}"
                for tool in schema["tools"]
            )
            return {
                "introspection": True,
                "response": (
                    f"Here are the actual tools available from **{schema['server_label'] or server_name}**:\n\n"
                    f"{table}\n\n**Total tools:** {schema['tool_count']}\n**Source:** {schema['source']}\n\n"
                    "These tools were discovered by making a live API call to the MCP server."
                ),
                "specific_server": server_name,
                "discovered_tools": schema["tools"],
                "tool_count": schema["tool_count"],
            }
        if schema["status"] == "inaccessible":
            return {
                "introspection": True,
                "response": (
                    f"The MCP server **{server_name}** is currently inaccessible: {schema.get('reason')}\n\n"
                    "This means the server is configured but may need proper API keys or authentication to list its tools."
                ),
                "specific_server": server_name,
                "status": "inaccessible",
                "reason": schema.get("reason"),
            }
        return None

    def _introspection_prompt(
        self, query: str, ctx: RequestContext, local: List[Dict[str, Any]], public: List[Dict[str, Any]]
    ) -> str:
        models = "\n".join(f"- {model}" for model in self.config.available_models)
        local_lines = "\n".join(
            f"- {tool['name']}: {tool['description']} "
            f"(Use cases: {', '.join(tool['use_cases']) or 'General purpose'}) "
            f"[{tool['function_count']} functions: {', '.join(tool['available_functions'])}]"
            for tool in local
        )
        public_lines = "\n".join(f"{tool['name']}: {tool['description']}" for tool in public)
        return f"""You are a helpful AI assistant that can see all the available tools and models in this MCP Navigation system. Answer the user's question naturally and conversationally based on what you can observe.{format_transcript(ctx.transcript)}

CURRENT USER QUERY: "{query}"

NOTE: When users ask about "MCPs", "MCP tools", "tools", or "servers", they want to see ALL available tools in both the local and public registries. Every tool listed below is an MCP-compatible tool that can be used in this system.

AVAILABLE MODELS:
{models}

LOCAL REGISTRY TOOLS:
{local_lines}

PUBLIC REGISTRY TOOLS:
{public_lines}

SYSTEM INFORMATION:
- This system can use any tool from the local registry or public MCP registry automatically
- Users can specify models in their requests
- Tools are accessed via MCP (Model Context Protocol)

FORMATTING INSTRUCTIONS: When listing tools, use this exact format:

**Available Models:**
[List models with dashes]

**Local Registry Tools:**
[List with descriptions and use cases]

**Public Registry Tools:**
[List in format: tool.name: description (no dashes)]

IMPORTANT: When asked to list tools, ALWAYS show ALL tools from both local and public registries in the clean format above."""

    # ── Direct answers and example commands ──────────────────

    async def _answer_directly(self, decision: RoutingDecision, ctx: RequestContext) -> Dict[str, Any]:
        response = await self.gateway.create_response(ctx.api_key, ctx.model, decision.prompt or "", [])
        return {"direct_response": True, "response": extract_output_text(response, DIRECT_FALLBACK)}

    def _curl_example(self, query: str, ctx: RequestContext) -> Optional[Dict[str, Any]]:
        target = find_mentioned_tool(query, self.registry)
        if target is None:
            tools = self.registry.all()
            if not tools:
                return None
            target = tools[0]

        config = redact_payload(resolve_tool(target).to_payload(), target)
        example_query = (
            target.meta.example_queries[0] if target.meta and target.meta.example_queries else "Your query here"
        )
        return {
            "curl_generation": True,
            "response": (
                f"Here's how to use the **{target.name}** tool with the Responses API:\n\n"
                "This uses the Responses API format for MCP tool execution:"
            ),
            "curl_command": build_curl_command(ctx.model, example_query, [config], self.config.responses_url),
            "selected_tools": [{"name": target.name}],
            "tools_config": [config],
        }

    # ── Selection and execution ──────────────────────────────

    async def _candidates(
        self, custom_urls: List[str], discovered: Dict[str, DiscoveredServer], ctx: RequestContext
    ) -> List[CandidateTool]:
        candidates = [
            CandidateTool(
                name=descriptor.name,
                description=descriptor.description,
                source="local",
                use_cases=list(descriptor.meta.use_cases) if descriptor.meta else [],
                server_url=descriptor.server_url,
            )
            for descriptor in self.registry
        ]
        for url in custom_urls:
            descriptor = descriptor_from_url(url)
            if descriptor:
                candidates.append(CandidateTool(
                    name=url, description=descriptor.description, source="local",
                    use_cases=["Custom operations"], server_url=url,
                ))
        for url, server in discovered.items():
            for tool_name in server.tool_names:
                candidates.append(CandidateTool(name=tool_name, description="", source="discovered", server_url=url))
        for entry in await self._public_sample(ctx):
            candidates.append(CandidateTool(
                name=entry["name"], description=entry["description"], source="public", server_url=entry["server_url"],
            ))
        return candidates

    async def _select(self, query: str, custom_urls: List[str], ctx: RequestContext) -> SelectionResult:
        discovered = scan_transcript(ctx.transcript)
        candidates = await self._candidates(custom_urls, discovered, ctx)
        return await select_tools(query, candidates, discovered, ctx, self.gateway)

    async def _execute_selection(self, selection: SelectionResult, ctx: RequestContext) -> Dict[str, Any]:
        query = selection.execution_query or DEFAULT_EXECUTION_QUERY
        result = await self.executor.execute(selection.tool_names, query, ctx)

        payload: Dict[str, Any] = {
            "mode": "execute",
            "selected_tools": [tool.to_dict() for tool in selection.selected_tools],
            "execution_query": query,
            "tool_names": selection.tool_names,
            "resolved_tool_configs": [
                redact_payload(tool.to_payload(), self.registry.get(tool.name))
                for tool in result.resolved_tools
            ],
            "used_tool_headers": sorted(ctx.tool_headers),
            "missing_credentials": result.missing_credentials,
        }
        if result.ok:
            payload["result"] = result.data
        else:
            payload["error"] = result.data
            payload["status_code"] = result.status
        return payload

    async def _curl_for_selection(self, selection: SelectionResult, ctx: RequestContext) -> Dict[str, Any]:
        discovered = scan_transcript(ctx.transcript)
        tools = []
        for name in selection.tool_names:
            resolution = await self.resolver.resolve(name, discovered=discovered)
            if resolution is None:
                logger.warning(f"[{ctx.request_id}] Skipping unresolved tool '{name}' in curl generation")
                continue
            resolved = resolve_tool(resolution.descriptor)
            tools.append(redact_payload(resolved.to_payload(), resolution.descriptor))

        query = selection.execution_query or "Your query here"
        return {
            "mode": "curl",
            "selected_tools": [tool.to_dict() for tool in selection.selected_tools],
            "execution_query": selection.execution_query,
            "curl_command": build_curl_command(ctx.model, query, tools, self.config.responses_url),
            "tools_config": tools,
        }
