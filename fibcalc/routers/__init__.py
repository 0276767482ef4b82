"""
Fibcalc Engine - API Routers
"""

from .health import router as health_router
from .values import router as values_router

__all__ = [
    "health_router",
    "values_router",
]
