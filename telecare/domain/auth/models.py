from typing import Dict, Any
from sqlalchemy import Column, String, Boolean, Date, DateTime, ForeignKey, Enum, Uuid, Index
from sqlalchemy.orm import relationship
from telecare.core.security import utcnow
from telecare.infrastructure.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """User roles in the telemedicine platform"""
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class VerificationType(str, enum.Enum):
    """Flow a one-time verification record belongs to"""
    PASSWORD_RESET = "passwordReset"
    ACCOUNT_VERIFICATION = "accountVerification"


class User(Base):
    """User model for authentication and authorization"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    username = Column(String(50), unique=True, index=True)
    email = Column(String(255), unique=True, index=True)
    contact_number = Column(String(20), unique=True, nullable=False, index=True)

    # bcrypt hash, never the plaintext
    password = Column(String(255), nullable=False)

    date_of_birth = Column(Date)
    gender = Column(Enum(Gender))
    role = Column(Enum(UserRole), nullable=False, default=UserRole.PATIENT)
    verified = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def token_claims(self, ip_address: str) -> Dict[str, Any]:
        """Claims embedded in every token issued for this user"""
        return {
            "userId": str(self.id),
            "userRole": self.role.value if isinstance(self.role, UserRole) else self.role,
            "userIP": ip_address,
        }

    def to_dict(self) -> Dict[str, Any]:
        """User fields safe to hand to clients (no password)"""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "contact_number": self.contact_number,
            "date_of_birth": self.date_of_birth,
            "gender": self.gender,
            "role": self.role,
            "verified": self.verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class RefreshToken(Base):
    """One live session: a refresh token that may still be exchanged or revoked"""
    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user = relationship("User")

    token = Column(String(1024), unique=True, nullable=False, index=True)
    ip = Column(String(45), nullable=False)
    expires = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class VerificationToken(Base):
    """Pending password reset or account verification started by a user"""
    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index("ix_verification_tokens_user_type", "user_id", "type"),
        Index("ix_verification_tokens_code_type", "verification_code", "type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user = relationship("User")

    type = Column(Enum(VerificationType), nullable=False)
    verification_code = Column(String(6), nullable=False)
    token = Column(String(1024), nullable=False, index=True)
    ip = Column(String(45), nullable=False)
    expires = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
