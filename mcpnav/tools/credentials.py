"""Credential resolution — materialize descriptor headers for one call.

Precedence for a header name, highest first: caller-supplied value, the
descriptor's environment source, the descriptor's literal default. Nothing is
cached; every call starts from the descriptor again.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .registry import EnvValue, HeaderValue, ToolDescriptor

logger = logging.getLogger(__name__)

MISSING_SENTINELS = ("Bearer undefined", "undefined")


@dataclass(frozen=True)
class ResolvedTool:
    """Wire shape for the Responses API. Never carries meta/registry info."""
    name: str
    server_label: str
    server_url: str
    headers: Dict[str, str] = field(default_factory=dict)
    require_approval: str = "never"
    type: str = "mcp"
    missing_credentials: Tuple[str, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "server_label": self.server_label,
            "server_url": self.server_url,
            "headers": dict(self.headers),
            "require_approval": self.require_approval,
        }


def _resolve_value(value: HeaderValue, environ: Mapping[str, str]) -> str:
    if isinstance(value, EnvValue):
        secret = environ.get(value.variable)
        if not secret:
            secret = value.default
        if secret is None:
            # "Bearer undefined" / "" mark the credential as missing downstream
            return f"{value.prefix}undefined" if value.prefix else ""
        return f"{value.prefix}{secret}"
    return value.value


def is_missing(value: str) -> bool:
    return value in MISSING_SENTINELS or not value.strip()


def resolve_tool(
    descriptor: ToolDescriptor,
    caller_headers: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ResolvedTool:
    caller_headers = caller_headers or {}
    environ = os.environ if environ is None else environ

    headers: Dict[str, str] = {}
    for name, value in descriptor.headers.items():
        override = caller_headers.get(name)
        headers[name] = override if override else _resolve_value(value, environ)

    # Caller headers outside the template pass through verbatim
    for name, value in caller_headers.items():
        if name not in headers:
            headers[name] = value

    missing = tuple(name for name, value in headers.items() if is_missing(str(value)))
    return ResolvedTool(
        name=descriptor.name,
        server_label=descriptor.server_label,
        server_url=descriptor.server_url,
        headers=headers,
        require_approval=descriptor.require_approval,
        missing_credentials=missing,
    )


def header_key_candidates(tool_name: str) -> List[str]:
    """Keys tried, in order, when looking up caller headers for a tool."""
    return [
        tool_name,
        tool_name.lower(),
        re.sub(r"[^a-zA-Z0-9]", "", tool_name),
        tool_name.split("/")[-1],
        tool_name.split(".")[-1],
    ]


def find_caller_headers(tool_name: str, tool_headers: Mapping[str, Mapping[str, str]]) -> Dict[str, str]:
    for key in header_key_candidates(tool_name):
        headers = tool_headers.get(key)
        if headers:
            if key != tool_name:
                logger.info(f"Mapped tool '{tool_name}' to headers from key '{key}'")
            return dict(headers)
    # Unnamed credentials ("default") are never applied to an arbitrary server
    return {}


# ── Credentials embedded in a user query ─────────────────────

_QUERY_KEY_PATTERNS = [
    # "use api key sk-xxx for github"
    re.compile(r"(?:use|with)\s+(?:api\s*key|key)\s+(?P<key>[a-zA-Z0-9_\-]+)\s+for\s+(?P<tool>[a-zA-Z0-9._/\-]+)", re.IGNORECASE),
    # "github api key: sk-xxx"
    re.compile(r"(?P<tool>[a-zA-Z0-9._/\-]+)\s+(?:api\s*key|key):\s*(?P<key>[a-zA-Z0-9_\-]+)", re.IGNORECASE),
    # "api key sk-xxx for gmail"
    re.compile(r"(?:api\s*key|key)\s+(?P<key>[a-zA-Z0-9_\-]+)\s+for\s+(?P<tool>[a-zA-Z0-9._/\-]+)", re.IGNORECASE),
    # "token: xxx" / "bearer: xxx"
    re.compile(r"(?:bearer|token):\s*(?P<key>[a-zA-Z0-9_\-.]+)", re.IGNORECASE),
    # "authorization: bearer xxx"
    re.compile(r"authorization:\s*bearer\s+(?P<key>[a-zA-Z0-9_\-.]+)", re.IGNORECASE),
]


def extract_query_credentials(query: str) -> Dict[str, Dict[str, str]]:
    """Pull per-tool bearer credentials out of a natural-language query."""
    extracted: Dict[str, Dict[str, str]] = {}
    for pattern in _QUERY_KEY_PATTERNS:
        for match in pattern.finditer(query):
            groups = match.groupdict()
            tool = (groups.get("tool") or "default").lower()
            extracted[tool] = {"Authorization": f"Bearer {groups['key']}"}
    return extracted


def strip_query_credentials(query: str) -> str:
    cleaned = query
    for pattern in _QUERY_KEY_PATTERNS:
        cleaned = pattern.sub("", cleaned).strip()
    return re.sub(r"\s{2,}", " ", cleaned)
