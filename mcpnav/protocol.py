from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union

class _Body(BaseModel):
    model_config = {"populate_by_name": True}

    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model: Optional[str] = None

class ResponsesRequest(_Body):
    input: Optional[str] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list)

class ToolRequest(_Body):
    input: Optional[str] = None
    tool_headers: Dict[str, str] = Field(default_factory=dict, alias="toolHeaders")

class ToolsRequest(_Body):
    tools: Union[str, List[str], None] = None
    q: Optional[str] = None
    mode: str = "execute"
    refresh: bool = False
    tool_headers: Dict[str, Dict[str, str]] = Field(default_factory=dict, alias="toolHeaders")
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list)

class SelectRequest(_Body):
    query: Optional[str] = None
    mode: Literal["execute", "curl"] = "execute"
    tool_headers: Dict[str, Dict[str, str]] = Field(default_factory=dict, alias="toolHeaders")
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list)
