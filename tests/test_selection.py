"""Tests for selection.py — prompt construction and reply parsing."""
import pytest

from mcpnav.selection import (
    MAX_SELECTED_TOOLS,
    CandidateTool,
    SelectionParseError,
    build_selection_prompt,
    parse_selection,
    select_tools,
)
from mcpnav.tools.memory import DiscoveredServer

CANDIDATES = [
    CandidateTool("parallel_web_search", "Web search", "local", ["News", "Weather"]),
    CandidateTool("get_time", "", "discovered", server_url="https://time.example.com/mcp"),
    CandidateTool("ai.waystation/gmail", "Read and send Gmail", "public"),
]
DISCOVERED = {"https://time.example.com/mcp": DiscoveredServer("https://time.example.com/mcp", ["get_time"])}


class TestParseSelection:
    def test_json_inside_prose(self):
        raw = 'Sure! Here you go:\n{"selected_tools": [{"name": "github", "reason": "issues", "registry": "local"}], ' \
              '"execution_query": "list my open issues"}\nHope that helps.'
        result = parse_selection(raw)
        assert result.tool_names == ["github"]
        assert result.selected_tools[0].reason == "issues"
        assert result.execution_query == "list my open issues"

    def test_truncated_to_three(self):
        tools = ", ".join(f'{{"name": "t{i}", "registry": "public"}}' for i in range(5))
        result = parse_selection(f'{{"selected_tools": [{tools}], "execution_query": "q"}}')
        assert result.tool_names == ["t0", "t1", "t2"]
        assert len(result.selected_tools) == MAX_SELECTED_TOOLS

    def test_registry_source_normalized(self):
        raw = '{"selected_tools": [{"name": "a", "registry": "LOCAL"}, {"name": "b", "registry": "weird"}, {"name": "c"}]}'
        result = parse_selection(raw)
        assert [t.registry_source for t in result.selected_tools] == ["local", "public", "local"]

    def test_entries_without_name_dropped(self):
        result = parse_selection('{"selected_tools": [{"reason": "x"}, "github"], "execution_query": "q"}')
        assert result.selected_tools == []

    def test_empty_selection(self):
        assert parse_selection('{"selected_tools": [], "execution_query": ""}').selected_tools == []

    def test_no_braces(self):
        with pytest.raises(SelectionParseError) as info:
            parse_selection("I would use github")
        assert info.value.raw_reply == "I would use github"

    def test_invalid_json(self):
        with pytest.raises(SelectionParseError) as info:
            parse_selection('{"selected_tools": [}')
        assert info.value.raw_reply == '{"selected_tools": [}'

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_selection("")


class TestSelectionPrompt:
    def test_sections(self):
        prompt = build_selection_prompt("weather in SF", CANDIDATES, DISCOVERED)
        assert 'CURRENT USER QUERY: "weather in SF"' in prompt
        assert "- parallel_web_search: Web search (News, Weather)" in prompt
        assert "- get_time: Available from https://time.example.com/mcp" in prompt
        assert "- ai.waystation/gmail: Read and send Gmail" in prompt
        assert "DISCOVERED MCP SERVERS FROM CONVERSATION" in prompt
        assert "prefer LOCAL tools, then DISCOVERED tools, then PUBLIC tools" in prompt

    def test_no_discovered(self):
        prompt = build_selection_prompt("q", CANDIDATES[:1], {})
        assert "DISCOVERED FROM CONVERSATION:\n(none)" in prompt
        assert "DISCOVERED MCP SERVERS FROM CONVERSATION" not in prompt


class TestSelectTools:
    @pytest.mark.asyncio
    async def test_single_chat_call(self, gateway, ctx):
        gateway.complete_chat.return_value = (
            '{"selected_tools": [{"name": "parallel_web_search", "reason": "r", "registry": "local"}], '
            '"execution_query": "weather in San Francisco"}'
        )
        result = await select_tools("weather SF?", CANDIDATES, DISCOVERED, ctx, gateway)

        assert result.tool_names == ["parallel_web_search"]
        gateway.complete_chat.assert_awaited_once()
        assert gateway.complete_chat.await_args.kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_parse_failure_not_retried(self, gateway, ctx):
        gateway.complete_chat.return_value = "no json"
        with pytest.raises(SelectionParseError):
            await select_tools("q", CANDIDATES, DISCOVERED, ctx, gateway)
        gateway.complete_chat.assert_awaited_once()
