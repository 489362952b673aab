"""
FastAPI server for matterhub.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .. import __version__
from ..chiptool.runner import ProcessRunner
from ..chiptool.stream import StreamSubscriber
from ..config import Config, get_config
from ..hub.dispatcher import CommandDispatcher
from ..hub.registry import SessionRegistry

logger = logging.getLogger(__name__)

# Global server instance
_server: Optional["HubServer"] = None


def get_server() -> Optional["HubServer"]:
    """Get the global server instance."""
    return _server


class HubServer:
    """
    matterhub server.

    Owns the components shared by every client:
    - chip-tool runner and stream subscriber
    - command dispatcher
    - session registry
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        tool = self.config.chip_tool

        self.runner = ProcessRunner(tool.path)
        self.subscriber = StreamSubscriber(tool.path)
        self.dispatcher = CommandDispatcher(self.runner, self.subscriber, tool)
        self.registry = SessionRegistry(self.dispatcher, self.config.session)

        self.tool_version: Optional[str] = None
        self._running = False

    async def start(self) -> None:
        """Check the tool and mark the server running."""
        tool_path = self.config.chip_tool.path
        result = await self.runner.check()
        if result.ok:
            lines = (result.stdout.strip() or result.stderr.strip()).splitlines()
            self.tool_version = lines[0] if lines else "unknown"
            logger.info(f"Using {tool_path} ({self.tool_version})")
        else:
            # Keep serving; each request reports the failure to its client
            logger.warning(f"chip-tool check failed for {tool_path}: {result.error}")

        self._running = True
        logger.info(
            f"matterhub running at http://{self.config.server.host}:{self.config.server.port}"
        )

    async def stop(self) -> None:
        """Close every session."""
        logger.info("Stopping matterhub server...")
        self._running = False

        sessions = self.registry.sessions()
        await self.registry.close_all()
        for session in sessions:
            await session.wait_closed(timeout=2.0)

        logger.info("matterhub server stopped")

    def status(self) -> dict:
        return {
            "status": "running" if self._running else "starting",
            "websocket_clients": self.registry.count,
            "chip_tool": {
                "path": self.config.chip_tool.path,
                "version": self.tool_version,
            },
        }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _server

    # Startup
    _server = HubServer(get_config())
    try:
        await _server.start()
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise

    yield

    # Shutdown
    await _server.stop()
    _server = None


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create the FastAPI application."""
    from .routes import router, ws_router

    if config:
        from ..config import set_config
        set_config(config)

    app = FastAPI(
        title="matterhub",
        description="WebSocket bridge to chip-tool",
        version=__version__,
        lifespan=lifespan,
    )

    origins = (config or get_config()).server.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")
    app.include_router(ws_router)

    # Health check
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    reload: bool = False,
    config: Optional[Config] = None,
):
    """Run the server with uvicorn."""
    app = create_app(config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )
