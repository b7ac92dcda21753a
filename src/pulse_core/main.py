"""Pulse metrics FastAPI application entry point.

Serve with (requires the "serve" extra):
    uvicorn --factory src.pulse_core.main:create_app
"""
import logging
from typing import Optional

from fastapi import FastAPI

from .api.routes import router as api_router
from .metrics.config import MetricsConfig
from .metrics.schema import init_database


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(config: Optional[MetricsConfig] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        config: Metrics configuration (read from environment when omitted)
    """
    config = config or MetricsConfig.from_env()
    init_database(config.db_path)

    app = FastAPI(
        title="Pulse Metrics API",
        version="0.1.0",
        description="Daily community metrics for the AI music platform",
    )
    app.state.config = config

    app.include_router(api_router)

    return app
