"""Tool system — registry, resolution chain, credentials, schema cache."""
from .registry import ToolDescriptor, ToolRegistry, EnvValue, LiteralValue, default_registry
from .credentials import ResolvedTool, resolve_tool
from .resolver import ToolResolver, ToolSource, Resolution
from .schema_cache import FunctionSchema, SchemaCache
from .router import route as route_query
