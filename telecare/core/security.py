from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Callable, Tuple
import enum
import secrets

import jwt
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from telecare.core.config import Settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenType(str, enum.Enum):
    """Kinds of signed tokens; each one has its own secret and lifetime"""
    ACCESS = "accessToken"
    REFRESH = "refreshToken"
    PASSWORD_RESET = "passwordResetToken"
    ACCOUNT_VERIFICATION = "accountVerificationToken"


class PasswordHasher:
    """Salted bcrypt hashing with a configurable cost factor.

    bcrypt is CPU bound, so hashing and verification run in the threadpool
    to keep the event loop responsive.
    """

    def __init__(self, rounds: int):
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    async def hash(self, password: str) -> str:
        """Generate password hash"""
        return await run_in_threadpool(self.context.hash, password)

    async def verify(self, password: str, hashed_password: Optional[str]) -> bool:
        """Verify a password against its hash"""
        if not hashed_password:
            await self.dummy_verify()
            return False
        try:
            return await run_in_threadpool(self.context.verify, password, hashed_password)
        except (ValueError, TypeError):
            # Stored value is not a recognizable hash
            return False

    async def dummy_verify(self) -> None:
        """Spend the same time as a real verification when there is no hash to check"""
        await run_in_threadpool(self.context.dummy_verify)


class TokenCodec:
    """Signs and verifies HMAC JWTs carrying {userId, userRole, userIP, exp}.

    ``verify`` never raises: any signature, format or expiry problem comes back
    as ``None`` so callers have a single "invalid" signal.
    """

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None):
        self.algorithm = settings.TOKEN_ALGORITHM
        self.clock = clock or utcnow
        self._secrets = {
            TokenType.ACCESS: settings.ACCESS_TOKEN_SECRET,
            TokenType.REFRESH: settings.REFRESH_TOKEN_SECRET,
            TokenType.PASSWORD_RESET: settings.PASSWORD_RESET_TOKEN_SECRET,
            TokenType.ACCOUNT_VERIFICATION: settings.ACCOUNT_VERIFICATION_TOKEN_SECRET,
        }
        self._expirations = {
            TokenType.ACCESS: settings.ACCESS_TOKEN_EXPIRATION,
            TokenType.REFRESH: settings.REFRESH_TOKEN_EXPIRATION,
            TokenType.PASSWORD_RESET: settings.PASSWORD_RESET_TOKEN_EXPIRATION,
            TokenType.ACCOUNT_VERIFICATION: settings.EMAIL_VERIFICATION_TOKEN_EXPIRATION,
        }

    def expiration(self, token_type: TokenType) -> timedelta:
        return timedelta(minutes=self._expirations[TokenType(token_type)])

    def expires_at(self, token_type: TokenType) -> datetime:
        """Absolute expiry of a token of this type issued now"""
        return self.clock() + self.expiration(token_type)

    def issue_with_expiry(
        self,
        claims: Dict[str, Any],
        token_type: TokenType = TokenType.ACCESS
    ) -> Tuple[str, datetime]:
        """Create a signed token and return it together with its expiry"""
        token_type = TokenType(token_type)
        expires = self.expires_at(token_type)
        to_encode = dict(claims)
        to_encode["exp"] = expires
        encoded_jwt = jwt.encode(to_encode, self._secrets[token_type], algorithm=self.algorithm)
        return encoded_jwt, expires

    def issue(self, claims: Dict[str, Any], token_type: TokenType = TokenType.ACCESS) -> str:
        """Create a signed token of the given type"""
        return self.issue_with_expiry(claims, token_type)[0]

    def verify(self, token: Optional[str], token_type: TokenType = TokenType.ACCESS) -> Optional[Dict[str, Any]]:
        """Decode and validate a token; None when it is invalid for any reason"""
        if not token or not isinstance(token, str):
            return None
        try:
            return jwt.decode(
                token,
                self._secrets[TokenType(token_type)],
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.PyJWTError:
            return None


def generate_verification_code() -> str:
    """Six ASCII digits drawn uniformly from 100000..999999 with a CSPRNG"""
    return f"{100000 + secrets.randbelow(900000):06d}"
