from typing import Any, Callable, Dict, Iterable, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.config import Settings, settings as app_settings
from telecare.core.exceptions import AuthenticationError, AuthorizationError
from telecare.core.security import PasswordHasher, TokenCodec, TokenType
from telecare.domain.auth.models import UserRole
from telecare.domain.auth.service import AuthenticationService, UserService
from telecare.infrastructure.database import get_db
from telecare.infrastructure.notifications import NotificationService


def get_settings() -> Settings:
    return app_settings


def get_password_hasher(settings: Settings = Depends(get_settings)) -> PasswordHasher:
    return PasswordHasher(settings.HASH_SALT_ROUND)


def get_token_codec(settings: Settings = Depends(get_settings)) -> TokenCodec:
    return TokenCodec(settings)


def get_notification_service(settings: Settings = Depends(get_settings)) -> NotificationService:
    return NotificationService(settings)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: NotificationService = Depends(get_notification_service),
    hasher: PasswordHasher = Depends(get_password_hasher),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthenticationService:
    return AuthenticationService(db, settings, notifier, hasher=hasher, codec=codec)


def get_user_service(
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> UserService:
    return UserService(db, hasher)


def fetch_bearer_token(request: Request) -> Optional[str]:
    """Return the bearer token from the Authorization header, if any"""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_token(token_type: TokenType) -> Callable[..., Dict[str, Any]]:
    """Dependency validating a bearer token of the given type and returning its claims"""

    def dependency(request: Request, codec: TokenCodec = Depends(get_token_codec)) -> Dict[str, Any]:
        token = fetch_bearer_token(request)
        if token is None:
            raise AuthenticationError(message="Unauthorized user request")

        claims = codec.verify(token, token_type)
        if not claims:
            raise AuthorizationError(message="Token verification failed")

        request.state.bearer_token = token
        return claims

    return dependency


def auth_user(allowed_roles: Iterable[UserRole] = ()) -> Callable[..., Dict[str, Any]]:
    """Dependency for routes that need a valid access token, optionally limited to roles"""
    allowed = {UserRole(role).value for role in allowed_roles}
    verify_access_token = require_token(TokenType.ACCESS)

    def dependency(claims: Dict[str, Any] = Depends(verify_access_token)) -> Dict[str, Any]:
        if allowed and claims.get("userRole") not in allowed:
            raise AuthorizationError(message="The current user is not allowed to perform this action")
        return claims

    return dependency
