"""Unit tests for identity providers and access token decoding."""

import time
from typing import Any

import jwt
import pytest

from voxcast.core.exceptions import AuthError, AuthErrorCode
from voxcast.services.identity_service import (
    StaticIdentityProvider,
    TokenIdentityProvider,
    decode_access_token,
)

TEST_JWT_SECRET = "test-jwt-secret-for-unit-tests-0123456789"
USER_ID = "550e8400-e29b-41d4-a716-446655440000"


def create_test_token(
    sub: str | None = USER_ID,
    exp_offset: int = 3600,
    secret: str = TEST_JWT_SECRET,
    audience: str = "authenticated",
) -> str:
    """Create a Supabase-style access token.

    Args:
        sub: Subject (user ID); omitted when None.
        exp_offset: Seconds from now for expiration (negative for expired).
        secret: JWT secret for signing.
        audience: Audience claim.

    Returns:
        str: Encoded JWT token.
    """
    now = int(time.time())
    payload: dict[str, Any] = {
        "email": "test@example.com",
        "role": "authenticated",
        "exp": now + exp_offset,
        "iat": now,
        "aud": audience,
        "iss": "https://test.supabase.co/auth/v1",
    }
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, secret, algorithm="HS256")


class TestDecodeAccessToken:
    """Tests for decode_access_token function."""

    def test_valid_token(self, test_settings: Any) -> None:
        """Test that a valid token yields its claims."""
        claims = decode_access_token(create_test_token(), TEST_JWT_SECRET)

        assert claims["sub"] == USER_ID
        assert claims["email"] == "test@example.com"

    def test_expired_token(self, test_settings: Any) -> None:
        """Test that an expired token raises TOKEN_EXPIRED."""
        with pytest.raises(AuthError) as exc_info:
            decode_access_token(create_test_token(exp_offset=-3600), TEST_JWT_SECRET)

        assert exc_info.value.code == AuthErrorCode.TOKEN_EXPIRED

    def test_wrong_secret(self, test_settings: Any) -> None:
        """Test that a token signed with another key is rejected."""
        token = create_test_token(secret="another-secret-that-is-long-enough-000")

        with pytest.raises(AuthError) as exc_info:
            decode_access_token(token, TEST_JWT_SECRET)

        assert exc_info.value.code == AuthErrorCode.INVALID_SIGNATURE

    def test_missing_subject(self, test_settings: Any) -> None:
        """Test that tokens without a subject are rejected."""
        with pytest.raises(AuthError) as exc_info:
            decode_access_token(create_test_token(sub=None), TEST_JWT_SECRET)

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    def test_wrong_audience(self, test_settings: Any) -> None:
        """Test that tokens for another audience are rejected."""
        with pytest.raises(AuthError) as exc_info:
            decode_access_token(create_test_token(audience="anon"), TEST_JWT_SECRET)

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    def test_garbage_token(self, test_settings: Any) -> None:
        """Test that malformed tokens are rejected."""
        with pytest.raises(AuthError):
            decode_access_token("not-a-jwt", TEST_JWT_SECRET)

    def test_uses_configured_secret(self, test_settings: Any) -> None:
        """Test that the SUPABASE_JWT_SECRET setting is the default key."""
        claims = decode_access_token(create_test_token(secret=test_settings.supabase_jwt_secret))

        assert claims["sub"] == USER_ID


class TestIdentityProviders:
    """Tests for identity provider implementations."""

    def test_static_provider(self) -> None:
        """Test that the static provider returns its fixed ID."""
        assert StaticIdentityProvider(USER_ID).current_user_id() == USER_ID
        assert StaticIdentityProvider(None).current_user_id() is None

    def test_token_provider_reads_subject(self, test_settings: Any) -> None:
        """Test that the token provider exposes the token subject."""
        provider = TokenIdentityProvider(create_test_token(), TEST_JWT_SECRET)

        assert provider.current_user_id() == USER_ID

    def test_token_provider_treats_expired_token_as_signed_out(self, test_settings: Any) -> None:
        """Test that an expired session means no identity."""
        provider = TokenIdentityProvider(create_test_token(exp_offset=-10), TEST_JWT_SECRET)

        assert provider.current_user_id() is None

    def test_token_provider_follows_token_changes(self, test_settings: Any) -> None:
        """Test that sign-in and sign-out swap the identity."""
        provider = TokenIdentityProvider(secret=TEST_JWT_SECRET)
        assert provider.current_user_id() is None

        provider.set_access_token(create_test_token())
        assert provider.current_user_id() == USER_ID

        provider.set_access_token(None)
        assert provider.current_user_id() is None
