"""JWT verification for callers of the matchmaking API"""

import logging
from datetime import UTC, datetime, timedelta

import jwt

from randomconnect.shared.models import UserIdentity

logger = logging.getLogger(__name__)


class AuthService:
    """Turn a signed token into a trusted identity snapshot.

    Tokens are issued by the platform's identity provider; ``create_access_token``
    exists for local tooling and tests.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_days: int = 30):
        if not secret_key:
            raise ValueError("JWT secret key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days

    def create_access_token(self, identity: UserIdentity) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": identity.user_id,
            "username": identity.username,
            "display_name": identity.display_name,
            "avatar": identity.avatar_ref,
            "exp": now + timedelta(days=self.expire_days),
            "iat": now,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> UserIdentity | None:
        """Return the identity in a valid token, or None"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Token missing sub")
            return None

        username = payload.get("username") or ""
        return UserIdentity(
            user_id=str(user_id),
            username=username,
            display_name=payload.get("display_name") or username,
            avatar_ref=payload.get("avatar"),
        )
