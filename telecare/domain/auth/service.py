from typing import Optional, Dict, Any, Callable, NamedTuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import hmac
import math
import logging
import secrets
import uuid

from telecare.core.config import Settings
from telecare.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BadRequestError,
    ConflictError,
    DeliveryError,
    InvalidCredentialsError,
    NotFoundError,
    handle_database_error,
)
from telecare.core.security import PasswordHasher, TokenCodec, TokenType, generate_verification_code
from telecare.domain.auth.identifiers import Identifier, IdentifierKind, classify
from telecare.domain.auth.models import User, UserRole, VerificationType
from telecare.domain.auth.repository import (
    DEFAULT_USER_SORT,
    SessionRepository,
    UserRepository,
    VerificationRepository,
)
from telecare.infrastructure.notifications import NotificationService

logger = logging.getLogger(__name__)

REFRESH_FAILED = "Refresh token verification failed"
TOKEN_FAILED = "Token verification failed"


class OneTimeCodeFlow(NamedTuple):
    token_type: TokenType
    subject: str
    template: str


FLOWS = {
    VerificationType.PASSWORD_RESET: OneTimeCodeFlow(
        TokenType.PASSWORD_RESET, "Password Reset Request", "passwordReset"
    ),
    VerificationType.ACCOUNT_VERIFICATION: OneTimeCodeFlow(
        TokenType.ACCOUNT_VERIFICATION, "Verification Request", "accountVerification"
    ),
}


def claims_user_id(claims: Dict[str, Any]) -> Optional[uuid.UUID]:
    """The userId claim as a UUID, or None when it is missing or malformed"""
    try:
        return uuid.UUID(str(claims.get("userId")))
    except ValueError:
        return None


class AuthenticationService:
    """Service layer for login, sessions and one-time-code flows"""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        notifier: NotificationService,
        hasher: Optional[PasswordHasher] = None,
        codec: Optional[TokenCodec] = None,
        code_generator: Callable[[], str] = generate_verification_code
    ):
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.hasher = hasher or PasswordHasher(settings.HASH_SALT_ROUND)
        self.codec = codec or TokenCodec(settings)
        self.code_generator = code_generator
        self.user_repo = UserRepository(db, self.hasher)
        self.session_repo = SessionRepository(db)
        self.verification_repo = VerificationRepository(db)

    async def login(self, identifier: str, password: str, ip_address: str) -> Dict[str, Any]:
        """Authenticate by email, contact number or username and open a session"""
        resolved = classify(identifier)
        user = await self.user_repo.get_by_field(resolved.field, resolved.value)

        if not user:
            await self.hasher.dummy_verify()
            logger.warning(f"Login rejected: no user for {resolved.kind.value}")
            raise InvalidCredentialsError()

        if not await self.hasher.verify(password, user.password):
            logger.warning(f"Login rejected: wrong password for user {user.id}")
            raise InvalidCredentialsError()

        if not user.verified:
            logger.warning(f"Login rejected: user {user.id} is not verified")
            raise AuthenticationError(message="User not verified")

        tokens = await self._issue_auth_tokens(user, ip_address)
        logger.info(f"User {user.id} logged in")

        return {"user": user.to_dict(), "tokens": tokens}

    async def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Mint a new access token from a live refresh token"""
        if not refresh_token:
            raise AuthenticationError(message="Unauthorized user request")

        claims = self.codec.verify(refresh_token, TokenType.REFRESH)
        if not claims:
            logger.warning("Refresh rejected: invalid refresh token")
            raise AuthorizationError(message=REFRESH_FAILED)

        user_id = claims_user_id(claims)
        if user_id is None or not await self.session_repo.exists(user_id=user_id, token=refresh_token):
            logger.warning(f"Refresh rejected: no live session for user {user_id}")
            raise AuthorizationError(message=REFRESH_FAILED)

        access_token, expires = self.codec.issue_with_expiry(
            self._session_claims(claims), TokenType.ACCESS
        )
        return {"accessToken": access_token, "expires": expires}

    async def logout(self, caller_claims: Dict[str, Any], refresh_token: Optional[str]) -> bool:
        """Revoke the caller's session; True if it was removed now, False if already gone"""
        if not refresh_token:
            raise AuthenticationError(message="Unauthorized user request")

        claims = self.codec.verify(refresh_token, TokenType.REFRESH)
        if not claims or claims.get("userId") != caller_claims.get("userId"):
            logger.warning(f"Logout rejected for user {caller_claims.get('userId')}")
            raise AuthorizationError(message=REFRESH_FAILED)

        try:
            removed = await self.session_repo.delete_by_token(refresh_token)
        except SQLAlchemyError as e:
            error = handle_database_error(e, "logout")
            error.message = "Failed to process the logout request"
            raise error from e

        logger.info(f"User {claims['userId']} logged out (session removed: {removed})")
        return removed

    async def request_password_reset(self, identifier: str, ip_address: str) -> Dict[str, Any]:
        """Send a password reset code by SMS or email"""
        resolved, user = await self._resolve_reference(identifier)
        await self._start_flow(user, resolved, ip_address, VerificationType.PASSWORD_RESET)

        return {
            "message": f"Password reset request initiated successfully! "
                       f"Please check your {resolved.kind.value} for the verification code.",
            "channel": resolved.kind.value,
        }

    async def get_reset_token(self, verification_code: str) -> str:
        """Exchange a password reset code for the signed reset token"""
        record = await self.verification_repo.find_by_code(
            verification_code, VerificationType.PASSWORD_RESET
        )
        if not record:
            raise BadRequestError(message="Invalid code")

        if not self.codec.verify(record.token, TokenType.PASSWORD_RESET):
            raise AuthenticationError(
                message="Password reset token expired. Please initiate a new password reset request."
            )

        return record.token

    async def confirm_password_reset(self, reset_token: Optional[str], new_password: str) -> User:
        """Set a new password using a reset token from get_reset_token"""
        if not reset_token:
            raise AuthenticationError(message="Unauthorized user request")

        claims = self.codec.verify(reset_token, TokenType.PASSWORD_RESET)
        user_id = claims_user_id(claims) if claims else None
        if user_id is None:
            raise AuthorizationError(message=TOKEN_FAILED)

        # The token is only good while it belongs to the pending reset
        record = await self.verification_repo.find_active(user_id, VerificationType.PASSWORD_RESET)
        if not record or not hmac.compare_digest(record.token.encode(), reset_token.encode()):
            raise AuthorizationError(message=TOKEN_FAILED)

        user = await self.user_repo.get_by_id(user_id)
        if not user:
            raise NotFoundError(message="User not found")

        user = await self.user_repo.update(user, {"password": new_password})
        await self.verification_repo.delete_active(user.id, VerificationType.PASSWORD_RESET)
        revoked = await self.session_repo.delete_all_for_user(user.id)

        logger.info(f"Password reset completed for user {user.id}, {revoked} session(s) revoked")
        return user

    async def request_verification(self, identifier: str, ip_address: str) -> Dict[str, Any]:
        """Send an account verification code by SMS or email"""
        resolved, user = await self._resolve_reference(identifier)

        if user.verified:
            raise BadRequestError(message="User already verified")

        await self._start_flow(user, resolved, ip_address, VerificationType.ACCOUNT_VERIFICATION)

        return {
            "message": f"User verification request initiated successfully! "
                       f"Please check your {resolved.kind.value} for the verification code.",
            "channel": resolved.kind.value,
        }

    async def confirm_verification(self, verification_code: str) -> User:
        """Mark the account owning this code as verified"""
        record = await self.verification_repo.find_by_code(
            verification_code, VerificationType.ACCOUNT_VERIFICATION
        )
        if not record:
            raise BadRequestError(message="Invalid code")

        if not self.codec.verify(record.token, TokenType.ACCOUNT_VERIFICATION):
            raise AuthenticationError(
                message="Verification token expired. Please initiate new verification request."
            )

        user = await self.user_repo.get_by_id(record.user_id)
        if not user:
            raise NotFoundError(message="User not found")

        user = await self.user_repo.update(user, {"verified": True})
        await self.verification_repo.delete_active(user.id, VerificationType.ACCOUNT_VERIFICATION)

        logger.info(f"User {user.id} verified")
        return user

    async def _issue_auth_tokens(self, user: User, ip_address: str) -> Dict[str, Any]:
        """Issue an access/refresh pair and record the refresh token as a session"""
        claims = user.token_claims(ip_address)

        access_token, access_expires = self.codec.issue_with_expiry(claims, TokenType.ACCESS)
        # jti keeps tokens unique even when issued within the same second
        refresh_token, refresh_expires = self.codec.issue_with_expiry(
            {**claims, "jti": secrets.token_hex(16)}, TokenType.REFRESH
        )

        await self.session_repo.create(user.id, refresh_token, ip_address, refresh_expires)

        return {
            "accessToken": {"token": access_token, "expires": access_expires},
            "refreshToken": {"token": refresh_token, "expires": refresh_expires},
        }

    @staticmethod
    def _session_claims(claims: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "userId": claims.get("userId"),
            "userRole": claims.get("userRole"),
            "userIP": claims.get("userIP"),
        }

    async def _resolve_reference(self, identifier: str):
        """Find the user an email address or contact number belongs to"""
        resolved = classify(identifier)
        if resolved.kind == IdentifierKind.USERNAME:
            raise BadRequestError(message="Please provide a valid email address or contact number")

        user = await self.user_repo.get_by_field(resolved.field, resolved.value)
        if not user:
            raise NotFoundError(message=f"Your provided {resolved.kind.value} could not be found")

        return resolved, user

    async def _new_code(self, verification_type: VerificationType) -> str:
        # A code must point at exactly one pending record of its flow
        while True:
            code = self.code_generator()
            if not await self.verification_repo.exists(verification_code=code, type=verification_type):
                return code

    async def _start_flow(
        self,
        user: User,
        resolved: Identifier,
        ip_address: str,
        verification_type: VerificationType
    ) -> None:
        flow = FLOWS[verification_type]
        code = await self._new_code(verification_type)
        token, expires = self.codec.issue_with_expiry(
            {**user.token_claims(ip_address), "jti": secrets.token_hex(16)}, flow.token_type
        )

        # The record is only written once the code is actually on its way
        if not await self._deliver_code(user, resolved, code, flow):
            logger.error(f"{verification_type.value} delivery failed for user {user.id}")
            raise DeliveryError(message=f"Failed to send the verification code to your {resolved.kind.value}")

        await self.verification_repo.replace_active(
            user.id, verification_type, code, token, ip_address, expires
        )
        logger.info(f"{verification_type.value} requested for user {user.id} via {resolved.kind.value}")

    async def _deliver_code(self, user: User, resolved: Identifier, code: str, flow: OneTimeCodeFlow) -> bool:
        name = user.username or user.name

        if resolved.kind == IdentifierKind.CONTACT_NUMBER:
            return await self.notifier.send_sms(
                number=user.contact_number,
                message=f"Dear {name},\n\nYour OTP is {code}.\n\nThank you.",
            )

        return await self.notifier.send_email(
            to=user.email,
            subject=flow.subject,
            template=flow.template,
            data={"username": name, "verificationCode": code},
        )


class UserService:
    """Service layer for user management operations"""

    UNIQUE_FIELDS = ("email", "username", "contact_number")

    def __init__(self, db: AsyncSession, hasher: PasswordHasher):
        self.db = db
        self.user_repo = UserRepository(db, hasher)

    async def register_user(self, user_data: Dict[str, Any]) -> User:
        """Register a new, not yet verified patient"""
        await self._check_unique(user_data)

        # Other roles are only granted by an admin through update_user
        user_data = {**user_data, "role": UserRole.PATIENT, "verified": False}
        user = await self.user_repo.create(user_data)
        logger.info(f"User {user.id} registered")
        return user

    async def get_user_by_id(self, user_id: uuid.UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if not user:
            raise NotFoundError(message="User not found")
        return user

    async def list_users(
        self,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """Get one page of users matching the filters, with paging metadata"""
        users = await self.user_repo.get_all(filters, page=page, limit=limit, sort_by=sort_by or DEFAULT_USER_SORT)
        total = await self.user_repo.count(filters)

        return {
            "items": users,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit),
        }

    async def update_user(self, user_id: uuid.UUID, update_data: Dict[str, Any]) -> User:
        """Update user information; a new password is rehashed"""
        user = await self.get_user_by_id(user_id)
        await self._check_unique(update_data, exclude_id=user.id)
        return await self.user_repo.update(user, update_data)

    async def _check_unique(self, data: Dict[str, Any], exclude_id: Optional[uuid.UUID] = None) -> None:
        for field in self.UNIQUE_FIELDS:
            value = data.get(field)
            if value is None:
                continue
            if await self.user_repo.exists(exclude_id=exclude_id, **{field: value}):
                label = field.replace("_", " ")
                raise ConflictError(message=f"The {label} that you have entered already exists")
