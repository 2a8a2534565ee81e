"""FastAPI application: health check plus the /api routes."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import router
from .pipeline import Navigator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared registry, gateway and schema cache once per process."""
    if getattr(app.state, "navigator", None) is None:
        app.state.navigator = Navigator()
    logger.info(f"Local tools: {', '.join(app.state.navigator.registry.names())}")
    yield


app = FastAPI(title="mcp-nav", lifespan=lifespan)
app.include_router(router)


@app.get("/health")
async def health():
    return {"ok": True}
