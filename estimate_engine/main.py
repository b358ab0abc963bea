"""
Main FastAPI Application for the Estimate Engine.
Serves the versioned estimate REST API.
"""
import logging

from fastapi import FastAPI

from estimate_engine import __version__
from estimate_engine.config import get_config
from estimate_engine.models import init_db
from estimate_engine.api.v1 import api_router as v1_router

config = get_config()
logging.basicConfig(level=config.log_level, format=config.log_format)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Estimate Engine",
    description="Versioned construction estimates with materialized totals and cost visibility",
    version=__version__,
)

# Include v1 API routes
app.include_router(v1_router)


@app.on_event("startup")
def startup():
    """Create tables on startup."""
    init_db()
    logger.info(f"Estimate Engine {__version__} started (config {config.version})")


@app.get("/health")
def health():
    """Liveness probe."""
    return {"status": "ok", "version": __version__}
