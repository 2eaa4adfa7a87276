"""Main FastAPI application for the Claude CLI bridge."""

import asyncio
import logging
import socket
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.errors import register_error_handlers
from .api.routes import chat_completions, health, list_models
from .config_loader import BridgeSettings, load_settings
from .core.bridge import ClaudeCLI
from .core.registry import set_bridge
from .core.runner import _PENDING_CLI_TASKS
from .logging import configure_log_dir, setup_logging, wait_for_pending_logs

logger = logging.getLogger("cliproxy")


def create_app(
    settings: BridgeSettings, bridge: Optional[ClaudeCLI] = None
) -> FastAPI:
    """Build the FastAPI application around one bridge instance."""
    bridge = bridge or ClaudeCLI(settings)
    set_bridge(bridge, settings)
    configure_log_dir(settings.log_dir)

    app = FastAPI(title="Claude CLI OpenAI Bridge")
    app.state.settings = settings
    app.state.bridge = bridge

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_error_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        logger.info("Claude CLI bridge starting up...")
        logger.info("Configured bind address %s:%s", settings.host, settings.port)
        if settings.host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)
        logger.info("Claude CLI executable: %s (cwd=%s)", settings.cli_path, settings.cli_cwd)
        logger.info(
            "Debug mode: %s, file logging: %s", settings.debug, settings.file_logging
        )
        if settings.verify_on_startup and not await bridge.verify():
            logger.warning(
                "Claude CLI verification failed; requests will fail until it is fixed"
            )
        logger.info("Claude CLI bridge ready to handle requests")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Handle application shutdown."""
        pending_cli = list(_PENDING_CLI_TASKS)
        if pending_cli:
            logger.info("Stopping %d running Claude CLI processes", len(pending_cli))
            for task in pending_cli:
                task.cancel()
            await asyncio.gather(*pending_cli, return_exceptions=True)
        flushed = await wait_for_pending_logs()
        if flushed:
            logger.info("Flushed %d pending log tasks", flushed)

    # Register routes
    app.post("/v1/chat/completions")(chat_completions)
    app.get("/v1/models")(list_models)
    app.get("/health")(health)

    logger.info("FastAPI application created")
    return app


# Load configuration and build the application
settings = load_settings()
logger = setup_logging(settings.debug)
logger.debug("Settings: %s", settings.describe())
app = create_app(settings)

SERVER_HOST = settings.host
SERVER_PORT = settings.port

__all__ = ["app", "create_app", "settings", "SERVER_HOST", "SERVER_PORT"]
