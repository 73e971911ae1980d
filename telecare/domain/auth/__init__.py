from telecare.domain.auth.models import User, RefreshToken, VerificationToken, UserRole, Gender, VerificationType
from telecare.domain.auth.service import AuthenticationService, UserService

__all__ = [
    "User",
    "RefreshToken",
    "VerificationToken",
    "UserRole",
    "Gender",
    "VerificationType",
    "AuthenticationService",
    "UserService",
]
