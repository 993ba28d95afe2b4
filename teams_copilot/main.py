"""
Teams Copilot Bot - FastAPI application.

Hosts the Bot Framework webhook and the proactive notify endpoint.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teams_copilot import __version__
from teams_copilot.api.teams.bot_services import BotServices, build_bot_services
from teams_copilot.api.teams.routes import router as teams_router
from teams_copilot.config.settings import BotSettings
from teams_copilot.utils.telemetry import TelemetryHelper

settings = BotSettings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[BotServices] = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        services: Prebuilt bot services (tests); built from the environment at startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - startup and shutdown."""
        logger.info("Teams Copilot Bot starting up...")
        app.state.bot_services = services or build_bot_services(settings, telemetry=TelemetryHelper.from_env())

        yield

        logger.info("Teams Copilot Bot shutting down...")
        await app.state.bot_services.close()

    app = FastAPI(
        title="Teams Copilot Bot",
        description="Microsoft Teams copilot bot with per-conversation turn serialization",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(teams_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for Azure Container Apps."""
        return {
            "status": "healthy",
            "service": "teams-copilot-bot",
            "version": __version__
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3978)
