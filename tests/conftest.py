"""Shared fixtures: a mocked gateway and public registry, and a request context."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcpnav.session import RequestContext
from mcpnav.tools.public_registry import RegistryPage


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.create_response = AsyncMock(return_value={
        "output": [{"type": "message", "content": [{"type": "output_text", "text": "done"}]}],
    })
    gw.complete_chat = AsyncMock(return_value="")
    return gw


@pytest.fixture
def public_registry():
    client = MagicMock()
    client.url = "https://registry.example.com/v0/servers"
    client.lookup = AsyncMock(return_value=None)
    client.remote_servers = AsyncMock(return_value=RegistryPage())
    client.search = AsyncMock(return_value=RegistryPage())
    return client


@pytest.fixture
def ctx():
    return RequestContext(api_key="gsk-test", model="openai/gpt-oss-120b", request_id="test")


@pytest.fixture
def clean_env(monkeypatch):
    """No tool credentials in the environment."""
    for name in ("PARALLEL_API_KEY", "GITHUB_TOKEN", "X_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
