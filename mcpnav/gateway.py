"""Upstream gateway — the single place that calls the Responses API.

Transport and HTTP failures leave this module only as ``UpstreamError`` with a
status code and an ``ErrorCategory`` decided here, so callers never inspect
error text themselves.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .config import settings

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    SCHEMA_MISMATCH = "schema_mismatch"    # remote tool rejected the arguments
    TOOL_VALIDATION = "tool_validation"    # model called a function that isn't registered
    BAD_REQUEST = "bad_request"
    SERVER = "server"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class UpstreamError(Exception):
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        failed_generation: Optional[str] = None,
        mcp_tools_sent: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.category = category
        self.failed_generation = failed_generation
        self.mcp_tools_sent = mcp_tools_sent

    @property
    def is_tool_auth(self) -> bool:
        """Authentication failure raised by a remote MCP server, not by the Groq key."""
        text = self.message.lower()
        return (
            self.category == ErrorCategory.AUTHENTICATION
            and self.mcp_tools_sent
            and ("mcp" in text or "tool" in text)
        )

    @property
    def hint(self) -> str:
        """Extra guidance for tool-validation failures on namespaced function names."""
        if self.category != ErrorCategory.TOOL_VALIDATION or not self.failed_generation:
            return ""
        try:
            attempted = json.loads(self.failed_generation).get("name", "")
        except (ValueError, AttributeError):
            return ""
        if attempted and "__" in attempted:
            base = attempted.split("__")[0]
            return (
                f"The AI tried to call '{attempted}' but only '{base}' is registered. "
                "This suggests the tool schema needs to be updated to include the actual available functions."
            )
        return ""

    def describe(self) -> str:
        if self.is_tool_auth:
            return (
                "Authentication failed: The MCP tool requires a valid API key. "
                f"Check your environment variables. Details: {self.message}"
            )
        if self.category == ErrorCategory.AUTHENTICATION:
            return (
                "Authentication failed: The Groq API key was rejected. "
                f"Check the Authorization header or GROQ_API_KEY. Details: {self.message}"
            )
        if self.category == ErrorCategory.TOOL_VALIDATION:
            hint = f" {self.hint}" if self.hint else ""
            return f"Tool validation error: The AI tried to call a tool function that doesn't exist.{hint} Details: {self.message}"
        if self.status:
            return f"Groq API error ({self.status}): {self.message}"
        return f"Groq API error: {self.message}"


def classify_failure(status: Optional[int], message: str) -> ErrorCategory:
    """Map an upstream status + error text to a category.

    The Responses API has no typed error contract for remote MCP failures, so
    the phrases below are the ones it is known to emit.
    """
    text = (message or "").lower()
    if status == 401 or "401 (unauthorized)" in text or "authentication failed" in text:
        return ErrorCategory.AUTHENTICATION
    if "did not match schema" in text:
        return ErrorCategory.SCHEMA_MISMATCH
    if "tool call validation failed" in text:
        return ErrorCategory.TOOL_VALIDATION
    if status is None:
        return ErrorCategory.TRANSPORT
    if status == 424 or status >= 500:
        return ErrorCategory.SERVER
    if status == 400:
        return ErrorCategory.BAD_REQUEST
    return ErrorCategory.UNKNOWN


def _error_details(error: openai.APIStatusError):
    body = error.body
    if isinstance(body, dict):
        detail = body.get("error", body)
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"]), detail.get("failed_generation")
    return error.message, None


class ResponsesGateway:
    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or settings.groq_base_url

    def _get_client(self, api_key: str) -> AsyncOpenAI:
        # The SDK retries by default; every retry here is explicit
        return AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)

    async def create_response(
        self,
        api_key: str,
        model: str,
        input_text: str,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        tools = tools or []
        client = self._get_client(api_key)
        logger.debug(f"Responses request: model={model} input={input_text!r} tools={[t.get('server_url') for t in tools]}")
        try:
            response = await client.responses.create(model=model, input=input_text, tools=tools)
        except openai.APIStatusError as e:
            error = self._to_upstream_error(e)
            error.mcp_tools_sent = any(tool.get("type") == "mcp" for tool in tools)
            self._log_failure(error, model, input_text, tools)
            raise error from e
        except openai.APIConnectionError as e:
            error = UpstreamError(f"Connection error: {e}", category=ErrorCategory.TRANSPORT)
            self._log_failure(error, model, input_text, tools)
            raise error from e
        return response.model_dump(mode="json") if hasattr(response, "model_dump") else dict(response)

    async def complete_chat(
        self,
        api_key: str,
        model: str,
        messages: List[Dict[str, str]],
        response_format: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Chat completion returning the first choice's text ("" if none)."""
        client = self._get_client(api_key)
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": settings.router_temperature if temperature is None else temperature,
        }
        if response_format:
            kwargs["response_format"] = response_format
        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.APIStatusError as e:
            error = self._to_upstream_error(e)
            logger.error(f"Chat completion failed ({error.status}, {error.category.value}): {error.message}")
            raise error from e
        except openai.APIConnectionError as e:
            logger.error(f"Chat completion connection error: {e}")
            raise UpstreamError(f"Connection error: {e}", category=ErrorCategory.TRANSPORT) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    @staticmethod
    def _to_upstream_error(e: openai.APIStatusError) -> UpstreamError:
        message, failed_generation = _error_details(e)
        return UpstreamError(
            message,
            status=e.status_code,
            category=classify_failure(e.status_code, message),
            failed_generation=failed_generation,
        )

    @staticmethod
    def _log_failure(error: UpstreamError, model: str, input_text: str, tools: List[Dict[str, Any]]):
        logger.error(f"Responses API error ({error.status}, {error.category.value}): {error.message}")
        mcp_tools = [tool for tool in tools if tool.get("type") == "mcp"]
        if mcp_tools:
            logger.error(f"Failed request: model={model} input={input_text!r}")
            for i, tool in enumerate(mcp_tools, 1):
                logger.error(f"  {i}. {tool.get('server_url')} ({tool.get('server_label')})")


# ── Response normalization ───────────────────────────────────

def extract_output_text(response: Dict[str, Any], fallback: str = "") -> str:
    """Pull assistant text out of a Responses or Chat Completions shaped reply."""
    for item in response.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text" and content.get("text"):
                return content["text"]

    choices = response.get("choices") or []
    if choices:
        message = (choices[0] or {}).get("message") or {}
        if message.get("content"):
            return message["content"]

    if isinstance(response.get("content"), str) and response["content"]:
        return response["content"]
    return fallback


def find_tool_listing(response: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The ``mcp_list_tools`` output item, if the upstream produced one."""
    for item in response.get("output") or []:
        if isinstance(item, dict) and item.get("type") == "mcp_list_tools":
            return item
    return None
