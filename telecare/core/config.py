from typing import List, Union, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Telecare Auth"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./telecare.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Tokens (expirations are expressed in minutes)
    ACCESS_TOKEN_SECRET: str = "change-me-access-token-secret-0000000000"
    ACCESS_TOKEN_EXPIRATION: int = 15
    REFRESH_TOKEN_SECRET: str = "change-me-refresh-token-secret-000000000"
    REFRESH_TOKEN_EXPIRATION: int = 60 * 24 * 30
    PASSWORD_RESET_TOKEN_SECRET: str = "change-me-password-reset-secret-00000000"
    PASSWORD_RESET_TOKEN_EXPIRATION: int = 10
    ACCOUNT_VERIFICATION_TOKEN_SECRET: str = "change-me-account-verification-secret-00"
    EMAIL_VERIFICATION_TOKEN_EXPIRATION: int = 30
    TOKEN_ALGORITHM: str = "HS256"

    # Password hashing
    HASH_SALT_ROUND: int = 10

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    SMTP_FROM: str = "Telecare"

    # SMS gateway
    SMS_PROVIDER_HOST: Optional[str] = None
    SMS_API_KEY: Optional[str] = None
    SMS_SENDER_ID: Optional[str] = None
    SMS_TIMEOUT: float = 10.0

    @field_validator(
        "ACCESS_TOKEN_EXPIRATION",
        "REFRESH_TOKEN_EXPIRATION",
        "PASSWORD_RESET_TOKEN_EXPIRATION",
        "EMAIL_VERIFICATION_TOKEN_EXPIRATION",
    )
    @classmethod
    def validate_expiration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Token expiration must be a positive number of minutes")
        return v

    @field_validator("HASH_SALT_ROUND")
    @classmethod
    def validate_salt_round(cls, v: int) -> int:
        if not 4 <= v <= 31:
            raise ValueError("HASH_SALT_ROUND must be between 4 and 31")
        return v

    @model_validator(mode='after')
    def assemble_db_connection(self) -> 'Settings':
        if self.DATABASE_URL.startswith("postgresql://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

        # Clean parameters for asyncpg
        self.DATABASE_URL = self.DATABASE_URL.replace("sslmode=require", "ssl=require")
        return self

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')


settings = Settings()
