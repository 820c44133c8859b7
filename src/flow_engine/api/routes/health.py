"""Health check routes."""
from fastapi import APIRouter

from flow_engine.node_registry import get_node_registry

router = APIRouter()


@router.get("/health")
def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Status dict with the number of registered executors
    """
    return {
        "status": "healthy",
        "service": "flow-engine",
        "nodes": len(get_node_registry()),
    }
