from .campaigns import router as campaigns_router
from .health import router as health_router
from .metrics import router as metrics_router
from .tracking import router as tracking_router

__all__ = [
    "campaigns_router",
    "health_router",
    "metrics_router",
    "tracking_router",
]
