from pydantic import BaseModel
import os
import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

# Load .env file if it exists (before reading os.getenv)
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Only set if not already in environment (env vars take precedence)
                if key not in os.environ:
                    os.environ[key] = value


def _sanitize_ascii(val: str) -> str:
    """Strip non-ASCII characters from config values (prevents encoding errors)"""
    return val.encode('ascii', errors='ignore').decode('ascii').strip()


def _split_list(val: str) -> List[str]:
    return [item.strip() for item in val.split(",") if item.strip()]


_DEFAULT_MODELS = ",".join([
    "openai/gpt-oss-120b",
    "openai/gpt-oss-20b",
    "qwen/qwen3-32b",
    "moonshotai/kimi-k2-instruct-0905",
    "meta-llama/llama-4-maverick-17b-128e-instruct",
    "meta-llama/llama-4-scout-17b-16e-instruct",
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
])


class Settings(BaseModel):
    # Network
    http_host: str = os.getenv("MCPNAV_HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("MCPNAV_HTTP_PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Upstream Responses API (Groq, OpenAI-compatible)
    groq_api_key: str = _sanitize_ascii(os.getenv("GROQ_API_KEY", ""))
    groq_base_url: str = _sanitize_ascii(os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1"))
    default_model: str = _sanitize_ascii(os.getenv("DEFAULT_MODEL", "openai/gpt-oss-120b"))
    router_temperature: float = float(os.getenv("ROUTER_TEMPERATURE", "0.1"))
    available_models: List[str] = _split_list(os.getenv("AVAILABLE_MODELS", _DEFAULT_MODELS))

    # Public MCP registry
    mcp_registry_url: str = _sanitize_ascii(
        os.getenv("MCP_REGISTRY_URL", "https://registry.modelcontextprotocol.io/v0/servers")
    )
    registry_timeout_s: float = float(os.getenv("REGISTRY_TIMEOUT", "15"))
    public_registry_sample: int = int(os.getenv("PUBLIC_REGISTRY_SAMPLE", "100"))

    @property
    def responses_url(self) -> str:
        return f"{self.groq_base_url.rstrip('/')}/responses"


settings = Settings()

# Log config for debugging
_groq_key = '***' + settings.groq_api_key[-4:] if len(settings.groq_api_key) > 4 else 'EMPTY'
logger.info(f"Config: Responses API → {settings.groq_base_url} (key={_groq_key}), model={settings.default_model}")
logger.info(f"Config: MCP registry → {settings.mcp_registry_url}")
