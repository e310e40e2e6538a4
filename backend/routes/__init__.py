"""
Backend Routes - Modular API endpoints
"""
from .firearms import router as firearms_router
from .applications import router as applications_router
from .notifications import router as notifications_router

__all__ = [
    'firearms_router',
    'applications_router',
    'notifications_router'
]
