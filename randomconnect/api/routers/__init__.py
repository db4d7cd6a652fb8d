"""API Routers package

Routers are organized by feature domain.
"""

from . import random_connection_router

__all__ = ["random_connection_router"]
