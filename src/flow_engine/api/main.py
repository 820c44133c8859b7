"""FastAPI application."""
from fastapi import FastAPI

from flow_engine import __version__
from flow_engine.api.routes import flows, health
from flow_engine.observability import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Flow Engine",
    description="Validation and test runs for automation flows",
    version=__version__,
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(flows.router, tags=["flows"])


@app.get("/")
def root() -> dict:
    """Root endpoint."""
    return {
        "service": "flow-engine",
        "version": __version__,
        "docs": "/docs",
    }
