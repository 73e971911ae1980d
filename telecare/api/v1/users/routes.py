from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request, status
import uuid

from telecare.api.deps import get_auth_service, get_user_service, auth_user
from telecare.api.v1.auth.routes import client_ip
from telecare.api.v1.auth.schemas import (
    AcceptedResponse,
    MessageResponse,
    ReferenceRequest,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from telecare.core.exceptions import AuthorizationError
from telecare.domain.auth.models import UserRole
from telecare.domain.auth.service import AuthenticationService, UserService

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/verification", response_model=AcceptedResponse, status_code=status.HTTP_200_OK)
async def request_user_verification(
    reference_data: ReferenceRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Send an account verification code to the user's email or contact number"""
    return await auth_service.request_verification(reference_data.reference, client_ip(request))


@router.get("/verification/{verification_code}", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def verify_user(
    verification_code: str,
    auth_service: AuthenticationService = Depends(get_auth_service)
):
    """Confirm an account with the code it was sent"""
    await auth_service.confirm_verification(verification_code)
    return MessageResponse(message="Account verification successful")


@router.get("", response_model=UserListResponse, status_code=status.HTTP_200_OK)
async def get_users(
    name: Optional[str] = None,
    username: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[UserRole] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy", description='e.g. "name:asc,created_at:desc"'),
    claims: Dict[str, Any] = Depends(auth_user([UserRole.ADMIN])),
    user_service: UserService = Depends(get_user_service)
):
    """Get users with filtering, sorting and pagination (admin only)"""
    filters = {"name": name, "username": username, "email": email, "role": role}
    result = await user_service.list_users(filters, page=page, limit=limit, sort_by=sort_by)

    return UserListResponse(
        items=[UserResponse.model_validate(user) for user in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )


@router.get("/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def get_current_user(
    claims: Dict[str, Any] = Depends(auth_user()),
    user_service: UserService = Depends(get_user_service)
):
    """Get current user profile"""
    user = await user_service.get_user_by_id(uuid.UUID(claims["userId"]))
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def get_user(
    user_id: uuid.UUID,
    claims: Dict[str, Any] = Depends(auth_user([UserRole.ADMIN])),
    user_service: UserService = Depends(get_user_service)
):
    """Get user by ID (admin only)"""
    user = await user_service.get_user_by_id(user_id)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_user(
    user_id: uuid.UUID,
    user_data: UserUpdate,
    claims: Dict[str, Any] = Depends(auth_user()),
    user_service: UserService = Depends(get_user_service)
):
    """Update a user; users may edit themselves, admins anyone"""
    is_admin = claims.get("userRole") == UserRole.ADMIN.value
    if not is_admin and claims.get("userId") != str(user_id):
        raise AuthorizationError(message="The current user is not allowed to perform this action")

    update_data = user_data.model_dump(exclude_unset=True, exclude_none=True)
    # Only admins may change roles
    if not is_admin:
        update_data.pop("role", None)

    user = await user_service.update_user(user_id, update_data)
    return UserResponse.model_validate(user)
