"""Copy-pasteable curl commands against the Responses API, with credentials redacted."""
import json
import re
import shlex
from typing import Any, Dict, List, Mapping, Optional

from .tools.registry import EnvValue, ToolDescriptor

_CREDENTIAL_MARKERS = ("api", "key", "auth")


def is_credential_header(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _CREDENTIAL_MARKERS)


def placeholder_for(header_name: str, descriptor: Optional[ToolDescriptor] = None) -> str:
    """``<VAR>`` placeholder, keeping the descriptor's prefix (e.g. ``Bearer <GITHUB_TOKEN>``)."""
    if descriptor:
        value = descriptor.headers.get(header_name)
        if isinstance(value, EnvValue):
            return f"{value.prefix}<{value.variable}>"
    return f"<{re.sub(r'[^A-Z0-9]', '_', header_name.upper())}>"


def redact_headers(headers: Mapping[str, str], descriptor: Optional[ToolDescriptor] = None) -> Dict[str, str]:
    return {
        name: placeholder_for(name, descriptor) if is_credential_header(name) else value
        for name, value in headers.items()
    }


def redact_payload(payload: Dict[str, Any], descriptor: Optional[ToolDescriptor] = None) -> Dict[str, Any]:
    redacted = dict(payload)
    redacted["headers"] = redact_headers(payload.get("headers") or {}, descriptor)
    return redacted


def build_curl_command(model: str, query: str, tools: List[Dict[str, Any]], endpoint: str) -> str:
    """``tools`` must already be redacted; the body is emitted as indented JSON."""
    body = json.dumps({"model": model, "input": query, "tools": tools}, indent=2)
    return (
        f'curl -X POST "{endpoint}" \\\n'
        '  -H "Authorization: Bearer $GROQ_API_KEY" \\\n'
        '  -H "Content-Type: application/json" \\\n'
        f"  -d {shlex.quote(body)}"
    )
