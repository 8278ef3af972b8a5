from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import Depends, FastAPI

from .api_auth import get_bridge_context, router as auth_router
from .api_runtime import router as runtime_router
from .api_stream import router as stream_router
from .api_ws import router as ws_router
from .config import BridgeSettings, load_settings
from .context import BridgeContext
from .status import read_bridge_status

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("runtimebridge.supervisor")

VERSION = "0.1.0"


def create_app(
    settings: Optional[BridgeSettings] = None,
    *,
    context: Optional[BridgeContext] = None,
) -> FastAPI:
    """Build the bridge app around one context shared by every route."""
    if context is None:
        context = BridgeContext.from_settings(settings or load_settings())
    logging.getLogger("runtimebridge").setLevel(context.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Runtime bridge ready (command=%s, pairing_required=%s)",
            context.settings.runtime_command,
            context.settings.require_pairing,
        )
        try:
            yield
        finally:
            logger.info("Shutting down runtime bridge...")
            await context.dispose()
            logger.info("Runtime bridge stopped.")

    app = FastAPI(title="Runtime Bridge", version=VERSION, lifespan=lifespan)
    app.state.bridge = context
    app.include_router(auth_router)
    app.include_router(stream_router)
    app.include_router(runtime_router)
    app.include_router(ws_router)

    @app.get("/bridge-api/health")
    async def health_check(bridge: BridgeContext = Depends(get_bridge_context)):
        return {"data": await read_bridge_status(bridge), "version": VERSION}

    return app
