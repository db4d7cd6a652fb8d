"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import Cookie, Depends, Header, HTTPException, Request

from randomconnect.api.core.config import get_settings
from randomconnect.api.services import AuthService, RandomConnectionService
from randomconnect.shared.identity import IdentityDirectory
from randomconnect.shared.models import UserIdentity

logger = logging.getLogger(__name__)


# ============================================
# Service Dependencies
# ============================================

_random_connection_service: RandomConnectionService | None = None
_identity_directory = IdentityDirectory()


def init_random_connection_service(service: RandomConnectionService | None) -> None:
    """Install (or clear, with None) the process-wide coordinator"""
    global _random_connection_service
    _random_connection_service = service


def peek_random_connection_service() -> RandomConnectionService | None:
    return _random_connection_service


def get_random_connection_service() -> RandomConnectionService:
    if _random_connection_service is None:
        raise HTTPException(status_code=503, detail="Matchmaking not ready")
    return _random_connection_service


def get_identity_directory() -> IdentityDirectory:
    return _identity_directory


def get_auth_service(request: Request) -> AuthService:
    """Get AuthService for the running app's settings (dependency injection)"""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return AuthService(secret_key=settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


# ============================================
# Authentication Dependencies
# ============================================


def _extract_token(auth_token: str | None, authorization: str | None) -> str | None:
    if auth_token:
        return auth_token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def get_current_identity(
    auth_token: str | None = Cookie(None),
    authorization: str | None = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserIdentity:
    """Verify the caller's token (cookie or bearer header) and return who they are"""
    token = _extract_token(auth_token, authorization)
    if not token:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not logged in")

    identity = auth_service.verify_token(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    # Remembered for background re-queues, which have no request to read from
    _identity_directory.remember(identity)
    return identity


async def get_current_user_id(identity: UserIdentity = Depends(get_current_identity)) -> str:
    return identity.user_id
