"""Rule-based query matching — fast regex checks that run before or beside the LLM.

Covers custom server URLs pasted into a query, "tools from <server>" style
listing questions, and which registry tool a query mentions.
"""
import re
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s]+", re.IGNORECASE)
_MCP_URL_MARKERS = ("/sse", "/mcp", "api")
_LISTING_WORDS = ("check", "available", "list")


@dataclass
class RouteMatch:
    kind: str
    target: str


_RULES: List[Tuple[re.Pattern, str, Callable[[re.Match], str]]] = []


def _strip_punctuation(text: str) -> str:
    return text.rstrip(".!?,;:")


def _build_rules():
    rules = [
        # ── "list tools from ai.waystation/gmail MCP server" ─────
        (r"(?:tools?|available|what|list).*(?:for|from|in|of)\s+([a-zA-Z0-9._/-]+(?:mcp|server))",
         "server_listing",
         lambda m: m.group(1)),

        # ── "com.apple-rag/mcp-server functions" ─────────────────
        (r"([a-zA-Z0-9._/-]+(?:mcp|server)).*(?:tools?|available|what|functions)",
         "server_listing",
         lambda m: m.group(1)),
    ]

    _RULES.clear()
    for pattern, kind, extractor in rules:
        _RULES.append((re.compile(pattern, re.IGNORECASE), kind, extractor))


def route(text: str) -> Optional[RouteMatch]:
    """Match text against the rule table. Returns RouteMatch or None."""
    text = text.strip()
    for regex, kind, extractor in _RULES:
        match = regex.search(text)
        if match:
            target = _strip_punctuation(extractor(match).strip())
            if not target:
                continue
            logger.info(f"Router matched: '{text}' -> {kind}({target})")
            return RouteMatch(kind=kind, target=target)
    return None


def detect_custom_urls(text: str) -> List[str]:
    """URLs in the text that look like MCP endpoints."""
    urls = [url.rstrip(".,;:)") for url in _URL_RE.findall(text)]
    return [url for url in urls if any(marker in url for marker in _MCP_URL_MARKERS)]


def is_listing_request(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in _LISTING_WORDS)


def find_mentioned_tool(text: str, registry: ToolRegistry) -> Optional[ToolDescriptor]:
    """First registry tool named in the text by name, spaced name or label."""
    lowered = text.lower()
    for descriptor in registry:
        names = {
            descriptor.name.lower(),
            descriptor.name.lower().replace("_", " "),
            descriptor.server_label.lower(),
        }
        if any(name and name in lowered for name in names):
            return descriptor
    return None


_build_rules()
