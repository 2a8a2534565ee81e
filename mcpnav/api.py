"""REST API routes: gateway passthrough, tool execution/listing, AI selection, public registry."""
import logging
import os
import re
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .config import settings
from .gateway import UpstreamError
from .pipeline import Navigator
from .protocol import ResponsesRequest, SelectRequest, ToolRequest, ToolsRequest
from .session import RequestContext
from .tools.executor import ToolResult
from .tools.memory import parse_transcript
from .tools.public_registry import suggested_config
from .tools.registry import EnvValue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


# ── Dependencies ──────────────────────────────────────────────

def get_navigator(request: Request) -> Navigator:
    navigator = getattr(request.app.state, "navigator", None)
    if navigator is None:
        navigator = Navigator()
        request.app.state.navigator = navigator
    return navigator


def resolve_api_key(authorization: Optional[str], body_key: Optional[str] = None) -> str:
    """Authorization header, then body ``apiKey``, then GROQ_API_KEY."""
    match = _BEARER_RE.match(authorization or "")
    api_key = (match.group(1).strip() if match else "") or body_key or settings.groq_api_key
    if not api_key:
        raise HTTPException(
            status_code=400,
            detail="No Groq API key available. Provide via Authorization header, body.apiKey, or GROQ_API_KEY env var.",
        )
    return api_key


def _tool_response(result: ToolResult) -> JSONResponse:
    status = 200 if result.ok else result.status
    return JSONResponse(content=jsonable_encoder(result.data), status_code=status)


# ── Gateway passthrough ───────────────────────────────────────

@router.post("/groq/responses")
async def groq_responses(
    req: ResponsesRequest,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    api_key = resolve_api_key(authorization, req.api_key)
    if not req.model or not req.input:
        raise HTTPException(status_code=400, detail="model and input are required")
    try:
        return await navigator.gateway.create_response(api_key, req.model, req.input, req.tools)
    except UpstreamError as e:
        return JSONResponse(
            content={"error": e.describe(), "category": e.category.value},
            status_code=e.status if e.status and e.status >= 400 else 502,
        )


@router.get("/debug")
async def debug(navigator: Navigator = Depends(get_navigator)):
    """Which credentials are configured and which headers each tool sends. Never values."""
    variables = {"GROQ_API_KEY"}
    for descriptor in navigator.registry:
        variables.update(v.variable for v in descriptor.headers.values() if isinstance(v, EnvValue))
    return {
        "environment": {name: ("available" if os.environ.get(name) else "missing") for name in sorted(variables)},
        "tools_registry": {
            descriptor.name: {
                "server_label": descriptor.server_label,
                "server_url": descriptor.server_url,
                "headers": list(descriptor.headers),
                "require_approval": descriptor.require_approval,
            }
            for descriptor in navigator.registry
        },
        "schema_cache_entries": len(navigator.schema_cache),
    }


# ── Tool execution and listing ────────────────────────────────

@router.post("/tool/{tool_name}")
async def run_tool(
    tool_name: str,
    req: ToolRequest,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    api_key = resolve_api_key(authorization, req.api_key)
    if not req.input:
        raise HTTPException(status_code=400, detail="input is required")

    ctx = RequestContext(
        api_key=api_key,
        model=req.model or settings.default_model,
        tool_headers={tool_name: req.tool_headers},
    )
    source = "local registry" if tool_name in navigator.registry else "resolution chain"
    logger.info(f"[{ctx.request_id}] API tool endpoint: executing '{tool_name}' via {source}")
    result = await navigator.executor.execute([tool_name], req.input, ctx)
    return _tool_response(result)


def _tools_index(navigator: Navigator) -> Dict[str, Any]:
    examples = {}
    for descriptor in navigator.registry:
        meta = descriptor.meta
        example_query = meta.example_queries[0] if meta and meta.example_queries else "search or perform operations"
        examples[descriptor.name] = {
            "description": descriptor.description,
            "use_cases": list(meta.use_cases) if meta else [],
            "example": f"/api/tools?tools={descriptor.name}&q={example_query}",
        }
    return {
        "message": "MCP tools API",
        "available_tools": examples,
        "parameters": {
            "tools": "Comma-separated list of tool names",
            "q": "Query/input for the tools",
            "mode": "Either 'execute' (default) or 'list'",
            "refresh": "List mode only: rediscover instead of answering from the schema cache",
            "model": f"Optional model override (default: {settings.default_model})",
        },
    }


async def _handle_tools(
    navigator: Navigator,
    tools: Any,
    query: Optional[str],
    mode: str,
    ctx: RequestContext,
    refresh: bool = False,
) -> JSONResponse:
    if mode == "list":
        return _tool_response(await navigator.executor.list_tools(tools, ctx, refresh=refresh))
    if mode == "execute":
        return _tool_response(await navigator.executor.execute(tools, query, ctx))
    raise HTTPException(status_code=400, detail=f"Invalid mode '{mode}'. Use 'execute' or 'list'")


@router.get("/tools")
async def tools_get(
    tools: Optional[str] = None,
    q: Optional[str] = None,
    mode: Optional[str] = None,
    model: Optional[str] = None,
    refresh: bool = False,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    if not tools and not q and not mode:
        return _tools_index(navigator)
    ctx = RequestContext(api_key=resolve_api_key(authorization), model=model or settings.default_model)
    return await _handle_tools(navigator, tools, q, mode or "execute", ctx, refresh)


@router.post("/tools")
async def tools_post(
    req: ToolsRequest,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    ctx = RequestContext(
        api_key=resolve_api_key(authorization, req.api_key),
        model=req.model or settings.default_model,
        tool_headers=req.tool_headers,
        transcript=parse_transcript(req.conversation_history),
    )
    return await _handle_tools(navigator, req.tools, req.q, req.mode, ctx, req.refresh)


# ── AI selection ──────────────────────────────────────────────

@router.post("/select")
async def select_post(
    req: SelectRequest,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    api_key = resolve_api_key(authorization, req.api_key)
    if not req.query:
        raise HTTPException(status_code=400, detail="Query parameter is required")
    ctx = RequestContext(
        api_key=api_key,
        model=req.model or settings.default_model,
        tool_headers=req.tool_headers,
        transcript=parse_transcript(req.conversation_history),
    )
    return jsonable_encoder(await navigator.select(req.query, ctx, mode=req.mode))


@router.get("/select")
async def select_get(
    q: Optional[str] = None,
    query: Optional[str] = None,
    mode: str = Query(default="execute", pattern="^(execute|curl)$"),
    model: Optional[str] = None,
    authorization: Optional[str] = Header(default=None),
    navigator: Navigator = Depends(get_navigator),
):
    api_key = resolve_api_key(authorization)
    text = q or query
    if not text:
        raise HTTPException(status_code=400, detail='Query parameter "q" or "query" is required')
    ctx = RequestContext(api_key=api_key, model=model or settings.default_model)
    return jsonable_encoder(await navigator.select(text, ctx, mode=mode))


# ── Public registry ───────────────────────────────────────────

@router.get("/registry")
async def registry_search(
    search: str = "",
    limit: int = 50,
    cursor: Optional[str] = None,
    navigator: Navigator = Depends(get_navigator),
):
    try:
        page = await navigator.public_registry.search(search, limit=limit, cursor=cursor)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Registry endpoint error: {e}")
        return JSONResponse(
            content={"error": f"Registry fetch error: {e}", "registryUrl": navigator.public_registry.url},
            status_code=500,
        )

    servers: List[Dict[str, Any]] = []
    for server in page.servers:
        name = server.get("name") or ""
        servers.append({
            **server,
            "sideload": {
                "suggested_config": suggested_config(server),
                "test_url": f"/api/tools?tools={name}&q=test",
            },
        })

    next_cursor = page.metadata.get("next_cursor") or page.metadata.get("nextCursor")
    return {
        "servers": servers,
        "metadata": page.metadata,
        "search": search,
        "total_found": len(servers),
        "note": "Only shows MCP servers with 'remotes' that can be run through the Responses API",
        "next_page": f"/api/registry?cursor={next_cursor}" if next_cursor else None,
    }
