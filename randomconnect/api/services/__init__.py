"""Services layer - Business logic

Services are initialized with their dependencies and accessed through dependency injection.
"""

from .auth_service import AuthService
from .matcher import Matcher
from .random_connection_service import (
    CleanupResult,
    HistoryPage,
    JoinResult,
    RandomConnectionService,
)

__all__ = [
    "AuthService",
    "CleanupResult",
    "HistoryPage",
    "JoinResult",
    "Matcher",
    "RandomConnectionService",
]
