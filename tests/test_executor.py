"""Tests for tools/executor.py — execution orchestration and tool listing."""
import pytest

from mcpnav.gateway import ErrorCategory, UpstreamError
from mcpnav.session import RequestContext
from mcpnav.tools.executor import ToolExecutor, parse_tool_names
from mcpnav.tools.memory import ConversationTurn
from mcpnav.tools.registry import ToolDescriptor, default_registry
from mcpnav.tools.resolver import ToolResolver
from mcpnav.tools.schema_cache import FunctionSchema, SchemaCache

PARALLEL_URL = "https://mcp.parallel.ai/v1beta/search_mcp/"
HF_URL = "https://huggingface.co/mcp"

SCHEMA_ERROR = UpstreamError("Tool call arguments did not match schema", 400, ErrorCategory.SCHEMA_MISMATCH)


def _executor(gateway, public_registry, cache=None):
    resolver = ToolResolver(default_registry(), public_registry)
    return ToolExecutor(resolver, gateway, cache if cache is not None else SchemaCache())


def _listing(label, *names):
    return {"output": [{
        "type": "mcp_list_tools",
        "server_label": label,
        "tools": [
            {"name": name, "description": f"{name} tool", "input_schema": {"type": "object", "properties": {}}}
            for name in names
        ],
    }]}


def _tools_sent(gateway, call=0):
    return gateway.create_response.await_args_list[call].args[3]


class TestParseToolNames:
    def test_comma_list(self):
        assert parse_tool_names("github, huggingface,,") == ["github", "huggingface"]

    def test_list(self):
        assert parse_tool_names(["github", " "]) == ["github"]

    def test_empty(self):
        assert parse_tool_names(None) == []
        assert parse_tool_names("") == []


class TestExecuteValidation:
    @pytest.mark.asyncio
    async def test_no_tools(self, gateway, public_registry, ctx):
        result = await _executor(gateway, public_registry).execute("", "weather", ctx)
        assert result.status == 400
        assert result.data["error"] == "tools parameter is required"
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_query(self, gateway, public_registry, ctx):
        result = await _executor(gateway, public_registry).execute("github", "  ", ctx)
        assert result.status == 400
        assert "available_tools" in result.data
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_tool(self, gateway, public_registry, ctx):
        result = await _executor(gateway, public_registry).execute("github,nope", "hi", ctx)
        assert result.status == 404
        assert "'nope'" in result.data["error"]
        assert "/api/registry?search=nope" in result.data["suggestion"]
        assert result.data["available_tools"] == ["parallel_web_search", "github", "huggingface"]
        gateway.create_response.assert_not_awaited()


class TestExecute:
    @pytest.mark.asyncio
    async def test_single_local_tool(self, gateway, public_registry, ctx, clean_env):
        clean_env.setenv("PARALLEL_API_KEY", "pk-1")
        result = await _executor(gateway, public_registry).execute("parallel_web_search", "weather in SF", ctx)

        assert result.ok
        assert result.upstream_calls == 1
        gateway.create_response.assert_awaited_once()
        api_key, model, query, tools = gateway.create_response.await_args.args
        assert (api_key, model, query) == ("gsk-test", "openai/gpt-oss-120b", "weather in SF")
        assert tools == [{
            "type": "mcp",
            "server_label": "parallel_web_search",
            "server_url": PARALLEL_URL,
            "headers": {"x-api-key": "pk-1"},
            "require_approval": "never",
        }]

    @pytest.mark.asyncio
    async def test_missing_credentials_still_execute(self, gateway, public_registry, ctx, clean_env):
        result = await _executor(gateway, public_registry).execute("github", "list my issues", ctx)
        assert result.ok
        assert result.missing_credentials == {"github": ["Authorization"]}
        assert _tools_sent(gateway)[0]["headers"]["Authorization"] == "Bearer undefined"

    @pytest.mark.asyncio
    async def test_caller_headers_win(self, gateway, public_registry, clean_env):
        clean_env.setenv("PARALLEL_API_KEY", "from-env")
        ctx = RequestContext(api_key="gsk", model="m", tool_headers={"parallel_web_search": {"x-api-key": "mine"}})
        await _executor(gateway, public_registry).execute("parallel_web_search", "news", ctx)
        assert _tools_sent(gateway)[0]["headers"]["x-api-key"] == "mine"

    @pytest.mark.asyncio
    async def test_multiple_tools_one_call(self, gateway, public_registry, ctx, clean_env):
        result = await _executor(gateway, public_registry).execute("huggingface,github", "trending models", ctx)
        assert result.ok
        gateway.create_response.assert_awaited_once()
        assert [t["server_url"] for t in _tools_sent(gateway)] == [HF_URL, "https://api.githubcopilot.com/mcp/"]

    @pytest.mark.asyncio
    async def test_url_tool(self, gateway, public_registry, ctx):
        await _executor(gateway, public_registry).execute("https://mcp.example.com/mcp", "ping", ctx)
        tool = _tools_sent(gateway)[0]
        assert tool["server_url"] == "https://mcp.example.com/mcp"
        assert tool["headers"] == {}

    @pytest.mark.asyncio
    async def test_conversation_discovered_tool(self, gateway, public_registry):
        turn = ConversationTurn("assistant", "Available tools at https://time.example.com/mcp\n- **get_time**: Now")
        ctx = RequestContext(api_key="gsk", model="m", transcript=[turn])
        await _executor(gateway, public_registry).execute("get_time", "what time is it", ctx)
        assert _tools_sent(gateway)[0]["server_url"] == "https://time.example.com/mcp"
        public_registry.lookup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_public_registry_tool(self, gateway, public_registry, ctx):
        public_registry.lookup.return_value = ToolDescriptor(
            name="ai.waystation/gmail", server_label="ai.waystation/gmail", server_url="https://gmail.example.com/mcp",
        )
        result = await _executor(gateway, public_registry).execute("ai.waystation/gmail", "unread mail", ctx)
        assert result.ok
        assert _tools_sent(gateway)[0]["server_label"] == "ai.waystation/gmail"


class TestRetry:
    @pytest.mark.asyncio
    async def test_schema_mismatch_retried_once(self, gateway, public_registry, ctx):
        ok = {"output": []}
        gateway.create_response.side_effect = [SCHEMA_ERROR, ok]
        result = await _executor(gateway, public_registry).execute("huggingface", "find models", ctx)

        assert result.ok
        assert result.data is ok
        assert result.upstream_calls == 2
        assert gateway.create_response.await_args_list[1].args[2] == "Use the huggingface tool"

    @pytest.mark.asyncio
    async def test_retry_failure_reports_schema_error(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = [SCHEMA_ERROR, UpstreamError("still bad", 400, ErrorCategory.SCHEMA_MISMATCH)]
        result = await _executor(gateway, public_registry).execute("huggingface", "find models", ctx)

        assert result.status == 400
        assert result.data["error"] == "MCP Tool Schema Validation Failed"
        assert result.data["mcp_servers"] == [HF_URL]
        assert result.upstream_calls == 2
        assert gateway.create_response.await_count == 2

    @pytest.mark.asyncio
    async def test_at_most_two_calls_for_one_tool(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = SCHEMA_ERROR
        result = await _executor(gateway, public_registry).execute("huggingface", "find models", ctx)

        assert result.status == 400
        assert result.upstream_calls == 2
        assert gateway.create_response.await_count == 2

    @pytest.mark.asyncio
    async def test_no_retry_for_multiple_tools(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = SCHEMA_ERROR
        result = await _executor(gateway, public_registry).execute("huggingface,github", "find models", ctx)

        assert result.status == 400
        assert gateway.create_response.await_count == 1

    @pytest.mark.asyncio
    async def test_no_retry_for_other_errors(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("upstream exploded", 500, ErrorCategory.SERVER)
        await _executor(gateway, public_registry).execute("huggingface", "find models", ctx)
        assert gateway.create_response.await_count == 1


class TestFailureClassification:
    @pytest.mark.asyncio
    async def test_authentication(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("401 (Unauthorized)", 424, ErrorCategory.AUTHENTICATION)
        result = await _executor(gateway, public_registry).execute("github", "issues", ctx)
        assert result.status == 401
        assert result.category == "authentication"
        assert result.data["error"] == "Authentication failed"

    @pytest.mark.asyncio
    async def test_server_failure(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("MCP server error", 424, ErrorCategory.SERVER)
        result = await _executor(gateway, public_registry).execute("huggingface", "models", ctx)
        assert result.status == 500
        assert result.data["error"] == "MCP Server Execution Failed"
        assert result.data["troubleshooting"]

    @pytest.mark.asyncio
    async def test_tool_validation(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError(
            "Tool call validation failed", 400, ErrorCategory.TOOL_VALIDATION,
            failed_generation='{"name": "huggingface__model_search"}',
        )
        result = await _executor(gateway, public_registry).execute("huggingface", "models", ctx)
        assert result.status == 400
        assert "only 'huggingface' is registered" in result.data["details"]

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_message(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("Connection error: reset", None, ErrorCategory.TRANSPORT)
        result = await _executor(gateway, public_registry).execute("huggingface", "models", ctx)
        assert result.status == 500
        assert result.data["error"] == "Connection error: reset"

    @pytest.mark.asyncio
    async def test_rate_limit_passes_through(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("Rate limit reached for model", 429, ErrorCategory.UNKNOWN)
        result = await _executor(gateway, public_registry).execute("huggingface", "models", ctx)
        assert result.status == 429
        assert result.data["error"] == "Rate limit reached for model"
        assert "troubleshooting" not in result.data

    @pytest.mark.asyncio
    async def test_groq_key_rejected(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("Invalid API Key", 401, ErrorCategory.AUTHENTICATION,
                                                            mcp_tools_sent=True)
        result = await _executor(gateway, public_registry).execute("huggingface", "models", ctx)
        assert result.status == 401
        assert "GROQ_API_KEY" in result.data["suggestion"]
        assert "Groq API key was rejected" in result.data["details"]


class TestQueryShaping:
    @pytest.mark.asyncio
    async def test_run_without_cached_schema(self, gateway, public_registry, ctx):
        await _executor(gateway, public_registry).execute("huggingface", "run huggingface", ctx)
        assert gateway.create_response.await_args.args[2] == "Use the huggingface tool with default settings"

    @pytest.mark.asyncio
    async def test_run_parameterless_function(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        cache.set("huggingface", HF_URL, [FunctionSchema("huggingface")])
        await _executor(gateway, public_registry, cache).execute("huggingface", "execute huggingface", ctx)
        assert gateway.create_response.await_args.args[2] == "Use the huggingface tool without any parameters"

    @pytest.mark.asyncio
    async def test_run_function_with_parameters_unchanged(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        schema = {"type": "object", "properties": {"query": {"type": "string"}}}
        cache.set("huggingface", HF_URL, [FunctionSchema("huggingface", input_schema=schema)])
        await _executor(gateway, public_registry, cache).execute("huggingface", "run huggingface for llama", ctx)
        assert gateway.create_response.await_args.args[2] == "run huggingface for llama"

    @pytest.mark.asyncio
    async def test_ordinary_query_unchanged(self, gateway, public_registry, ctx):
        await _executor(gateway, public_registry).execute("huggingface", "how do I run llama locally", ctx)
        assert gateway.create_response.await_args.args[2] == "how do I run llama locally"


class TestListTools:
    @pytest.mark.asyncio
    async def test_without_tools_lists_registry(self, gateway, public_registry, ctx):
        result = await _executor(gateway, public_registry).list_tools(None, ctx)
        assert result.data["available_tools"] == ["parallel_web_search", "github", "huggingface"]
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_live_listing_populates_cache(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        gateway.create_response.return_value = _listing("Huggingface", "model_search", "hf_whoami")
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx)

        entry = result.data["schemas"][0]
        assert entry["status"] == "ok"
        assert entry["tool_count"] == 2
        assert entry["source"] == "local_registry"
        assert [t["name"] for t in entry["tools"]] == ["model_search", "hf_whoami"]
        assert gateway.create_response.await_args.args[2] == "List available tools"
        assert [f.name for f in cache.get("huggingface", HF_URL)] == ["model_search", "hf_whoami"]

    @pytest.mark.asyncio
    async def test_missing_credentials_skip_network(self, gateway, public_registry, ctx, clean_env):
        result = await _executor(gateway, public_registry).list_tools("github", ctx)
        entry = result.data["schemas"][0]
        assert entry["status"] == "inaccessible"
        assert "Authorization" in entry["reason"]
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auth_failure_is_inaccessible(self, gateway, public_registry, ctx):
        gateway.create_response.side_effect = UpstreamError("401 (Unauthorized)", 424, ErrorCategory.AUTHENTICATION)
        result = await _executor(gateway, public_registry).list_tools("huggingface", ctx)
        entry = result.data["schemas"][0]
        assert entry["status"] == "inaccessible"
        assert entry["reason"] == "Authentication failed - check API keys"

    @pytest.mark.asyncio
    async def test_other_failure_is_error(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        gateway.create_response.side_effect = UpstreamError("boom", 500, ErrorCategory.SERVER)
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx)
        assert result.data["schemas"][0]["status"] == "error"
        assert cache.get("huggingface", HF_URL) is None

    @pytest.mark.asyncio
    async def test_no_listing_caches_empty(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx)
        assert result.data["schemas"][0]["tool_count"] == 0
        assert cache.get("huggingface", HF_URL) == []

    @pytest.mark.asyncio
    async def test_cached_entry_answers_without_network(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        cache.set("huggingface", HF_URL, [FunctionSchema("model_search")])
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx)
        entry = result.data["schemas"][0]
        assert entry["cached"] is True
        assert entry["tool_count"] == 1
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_cached_entry_answers_without_network(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        cache.set("huggingface", HF_URL, [])
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx)
        assert result.data["schemas"][0]["tool_count"] == 0
        assert result.upstream_calls == 0
        gateway.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_listing_uses_cache(self, gateway, public_registry, ctx):
        gateway.create_response.return_value = _listing("Huggingface", "model_search")
        executor = _executor(gateway, public_registry)
        await executor.list_tools("huggingface", ctx)
        result = await executor.list_tools("huggingface", ctx)
        assert result.data["schemas"][0]["cached"] is True
        assert gateway.create_response.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_rediscovers(self, gateway, public_registry, ctx):
        cache = SchemaCache()
        cache.set("huggingface", HF_URL, [])
        gateway.create_response.return_value = _listing("Huggingface", "model_search")
        result = await _executor(gateway, public_registry, cache).list_tools("huggingface", ctx, refresh=True)
        assert result.data["schemas"][0]["tool_count"] == 1
        assert [f.name for f in cache.get("huggingface", HF_URL)] == ["model_search"]

    @pytest.mark.asyncio
    async def test_unknown_tool_404(self, gateway, public_registry, ctx):
        result = await _executor(gateway, public_registry).list_tools("nope", ctx)
        assert result.status == 404
