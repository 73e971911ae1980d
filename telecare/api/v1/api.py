from fastapi import APIRouter
from telecare.api.v1.auth import routes as auth
from telecare.api.v1.users import routes as users
from telecare.core.exceptions import ErrorResponse

# Error envelope documented for every endpoint
error_responses = {
    code: {"model": ErrorResponse}
    for code in (400, 401, 403, 404, 409, 500)
}

api_router = APIRouter(responses=error_responses)
api_router.include_router(auth.router)
api_router.include_router(users.router)
