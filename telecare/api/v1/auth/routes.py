from typing import Any, Dict
from fastapi import APIRouter, Depends, Request, Response, status

from telecare.api.deps import get_auth_service, get_user_service, auth_user, require_token
from telecare.api.v1.auth.schemas import (
    AcceptedResponse,
    AccessTokenResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordResetConfirm,
    ReferenceRequest,
    RefreshTokenRequest,
    ResetTokenResponse,
    UserCreate,
    UserResponse,
)
from telecare.core.security import TokenType
from telecare.domain.auth.service import AuthenticationService, UserService

router = APIRouter(prefix="/auth", tags=["Authentication"])


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    user_service: UserService = Depends(get_user_service)
):
    """Register a new user; the account must be verified before it can log in"""
    user = await user_service.register_user(user_data.model_dump())
    return UserResponse.model_validate(user)


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    login_data: LoginRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Authenticate user and return tokens"""
    return await auth_service.login(login_data.login, login_data.password, client_ip(request))


@router.post("/token", response_model=AccessTokenResponse, status_code=status.HTTP_200_OK)
async def refresh_token(
    token_data: RefreshTokenRequest,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Refresh access token using refresh token"""
    return await auth_service.refresh(token_data.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token_data: RefreshTokenRequest,
    claims: Dict[str, Any] = Depends(auth_user()),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Logout and revoke the session of the given refresh token"""
    await auth_service.logout(claims, token_data.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/reset-password", response_model=AcceptedResponse, status_code=status.HTTP_200_OK)
async def request_password_reset(
    reference_data: ReferenceRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Send a password reset code to the user's email or contact number"""
    return await auth_service.request_password_reset(reference_data.reference, client_ip(request))


@router.get("/reset-password/{verification_code}", response_model=ResetTokenResponse, status_code=status.HTTP_200_OK)
async def get_password_reset_token(
    verification_code: str,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Exchange a reset code for the reset token"""
    token = await auth_service.get_reset_token(verification_code)
    return ResetTokenResponse(token=token)


@router.put("/reset-password", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def process_password_reset(
    password_data: PasswordResetConfirm,
    request: Request,
    claims: Dict[str, Any] = Depends(require_token(TokenType.PASSWORD_RESET)),
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Set a new password using the bearer reset token"""
    await auth_service.confirm_password_reset(request.state.bearer_token, password_data.new_password)
    return MessageResponse(message="Password reset successful")
