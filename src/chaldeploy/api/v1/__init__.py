"""API v1 module."""

from chaldeploy.api.v1.health import router as health_router
from chaldeploy.api.v1.instances import router as instances_router

__all__ = [
    "health_router",
    "instances_router",
]
