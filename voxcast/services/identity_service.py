"""Current-user identity providers."""

import logging
from typing import Any

import jwt

from voxcast.core.config import get_settings
from voxcast.core.exceptions import AuthError, AuthErrorCode

logger = logging.getLogger(__name__)


def decode_access_token(token: str, secret: str | None = None) -> dict[str, Any]:
    """Decode and validate a Supabase access token.

    Validates the signature, expiration and audience. Supabase signs
    session tokens with the project's JWT secret (HS256).

    Args:
        token: The JWT access token.
        secret: Signing secret; defaults to the SUPABASE_JWT_SECRET setting.

    Returns:
        dict: Verified token claims.

    Raises:
        AuthError: If the token is invalid, expired, or has a wrong signature.
    """
    settings = get_settings()
    key = secret or settings.supabase_jwt_secret
    if not key:
        raise AuthError("JWT secret not configured", AuthErrorCode.INVALID_TOKEN)

    try:
        return jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"]},
        )

    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED) from e

    except jwt.InvalidSignatureError as e:
        raise AuthError("Invalid token signature", AuthErrorCode.INVALID_SIGNATURE) from e

    except jwt.MissingRequiredClaimError as e:
        raise AuthError(f"Token missing required claim: {e}", AuthErrorCode.INVALID_TOKEN) from e

    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid token: {e}", AuthErrorCode.INVALID_TOKEN) from e


class StaticIdentityProvider:
    """Identity fixed at construction time (server-side jobs, tests)."""

    def __init__(self, user_id: str | None) -> None:
        self._user_id = user_id

    def current_user_id(self) -> str | None:
        return self._user_id


class TokenIdentityProvider:
    """Identity read from the signed-in session's access token.

    The token can be swapped when the auth client refreshes the session.
    An invalid or expired token means nobody is signed in.
    """

    def __init__(self, access_token: str | None = None, secret: str | None = None) -> None:
        self._access_token = access_token
        self._secret = secret

    def set_access_token(self, access_token: str | None) -> None:
        """Replace the token after sign-in, refresh or sign-out."""
        self._access_token = access_token

    def current_user_id(self) -> str | None:
        """Return the token's subject, or None when it cannot be trusted."""
        if not self._access_token:
            return None
        try:
            claims = decode_access_token(self._access_token, self._secret)
        except AuthError as e:
            logger.warning("Ignoring access token: %s (%s)", e.message, e.code.value)
            return None
        return str(claims["sub"])
