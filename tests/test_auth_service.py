from datetime import UTC, datetime, timedelta

import jwt
import pytest

from randomconnect.api.services import AuthService
from randomconnect.shared.models import UserIdentity


def test_token_roundtrip() -> None:
    auth = AuthService("secret")
    identity = UserIdentity(
        user_id="42", username="neo", display_name="Neo", avatar_ref="https://cdn/neo.png"
    )

    assert auth.verify_token(auth.create_access_token(identity)) == identity


def test_display_name_defaults_to_username() -> None:
    auth = AuthService("secret")
    token = jwt.encode(
        {"sub": "42", "username": "neo", "exp": datetime.now(UTC) + timedelta(hours=1)},
        "secret",
        algorithm="HS256",
    )

    identity = auth.verify_token(token)
    assert identity.display_name == "neo"
    assert identity.avatar_ref is None


def test_rejects_wrong_secret() -> None:
    token = AuthService("secret").create_access_token(UserIdentity(user_id="42"))
    assert AuthService("other").verify_token(token) is None


def test_rejects_expired_token() -> None:
    token = jwt.encode(
        {"sub": "42", "exp": datetime.now(UTC) - timedelta(minutes=1)}, "secret", algorithm="HS256"
    )
    assert AuthService("secret").verify_token(token) is None


def test_rejects_token_without_subject() -> None:
    token = jwt.encode(
        {"username": "neo", "exp": datetime.now(UTC) + timedelta(hours=1)},
        "secret",
        algorithm="HS256",
    )
    assert AuthService("secret").verify_token(token) is None


def test_rejects_garbage() -> None:
    assert AuthService("secret").verify_token("not-a-jwt") is None


def test_empty_secret_is_refused() -> None:
    with pytest.raises(ValueError):
        AuthService("")
