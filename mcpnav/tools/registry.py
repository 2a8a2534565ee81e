"""Tool registry — statically known MCP server descriptors and lookup."""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiteralValue:
    """A header value sent as-is."""
    value: str


@dataclass(frozen=True)
class EnvValue:
    """A header value read from the environment at call time.

    ``prefix`` is prepended to the secret (e.g. ``"Bearer "``); ``default`` is
    used when the variable is unset.
    """
    variable: str
    prefix: str = ""
    default: Optional[str] = None


HeaderValue = Union[LiteralValue, EnvValue]


@dataclass(frozen=True)
class ToolMeta:
    description: str = ""
    example_queries: Tuple[str, ...] = ()
    use_cases: Tuple[str, ...] = ()
    functions: Tuple[str, ...] = ()  # known function names, documentation only


@dataclass(frozen=True)
class RegistryInfo:
    name: str
    description: str = ""
    version: str = ""
    repository: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "repository": self.repository,
        }


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    server_label: str
    server_url: str
    headers: Mapping[str, HeaderValue] = field(default_factory=dict)
    require_approval: str = "never"
    meta: Optional[ToolMeta] = None
    registry_info: Optional[RegistryInfo] = None

    @property
    def description(self) -> str:
        if self.meta and self.meta.description:
            return self.meta.description
        if self.registry_info and self.registry_info.description:
            return self.registry_info.description
        return self.server_label or "MCP tool"


class ToolRegistry:
    """Read-only name → descriptor map, built once at startup."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()):
        tools: Dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                raise ValueError(f"Duplicate tool name in registry: {descriptor.name}")
            tools[descriptor.name] = descriptor
            logger.debug(f"Registered tool: {descriptor.name} -> {descriptor.server_url}")
        self._tools = MappingProxyType(tools)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def all(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def descriptions_for_llm(self) -> str:
        """Generate the local tool list for LLM prompts."""
        lines = []
        for tool in self._tools.values():
            use_cases = ", ".join(tool.meta.use_cases) if tool.meta else ""
            lines.append(f"- {tool.name}: {tool.description} ({use_cases or 'General purpose'})")
        return "\n".join(lines)


def default_tools() -> List[ToolDescriptor]:
    return [
        ToolDescriptor(
            name="parallel_web_search",
            server_label="parallel_web_search",
            server_url="https://mcp.parallel.ai/v1beta/search_mcp/",
            headers={"x-api-key": EnvValue("PARALLEL_API_KEY")},
            meta=ToolMeta(
                description="Web search with AI-optimized results",
                example_queries=(
                    "what's the weather in San Francisco",
                    "latest developments in AI safety research",
                    "current news about climate change",
                ),
                use_cases=("Current events", "Research", "Weather", "News"),
                functions=("web_search_preview",),
            ),
        ),
        ToolDescriptor(
            name="github",
            server_label="GitHub",
            server_url="https://api.githubcopilot.com/mcp/",
            headers={"Authorization": EnvValue("GITHUB_TOKEN", prefix="Bearer ")},
            meta=ToolMeta(
                description="GitHub repository management and operations",
                example_queries=(
                    "create an issue in my repo about adding MCP examples",
                    "search for repositories related to AI",
                    "create a new issue titled 'Add authentication'",
                ),
                use_cases=("Create issues", "Manage repos", "Code search", "Pull requests"),
                functions=("github_operations",),
            ),
        ),
        ToolDescriptor(
            name="huggingface",
            server_label="Huggingface",
            server_url="https://huggingface.co/mcp",
            meta=ToolMeta(
                description="Hugging Face model discovery and information",
                example_queries=(
                    "what are the trending AI models this week?",
                    "find the most popular text-to-image models",
                    "search for models related to natural language processing",
                ),
                use_cases=("Model discovery", "Trending models", "Model info", "AI research"),
                functions=(
                    "hf_whoami", "space_search", "model_search", "paper_search",
                    "dataset_search", "hub_repo_details", "hf_doc_search",
                    "hf_doc_fetch", "gr1_flux1_schnell_infer",
                ),
            ),
        ),
    ]


def default_registry() -> ToolRegistry:
    return ToolRegistry(default_tools())
