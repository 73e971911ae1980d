import pytest
from datetime import date
from typing import AsyncGenerator, Dict, Any, List
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from telecare.main import app
from telecare.api.deps import get_settings, get_notification_service
from telecare.core.config import Settings
from telecare.core.security import PasswordHasher, TokenCodec
from telecare.domain.auth.models import User, Gender, UserRole
from telecare.domain.auth.service import AuthenticationService, UserService
from telecare.infrastructure.database import get_db, init_db, build_sessionmaker


# In-memory database shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_PASSWORD = "Secret123"


class RecordingNotifier:
    """Stands in for NotificationService and keeps every message it was asked to send"""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.emails: List[Dict[str, Any]] = []
        self.sms: List[Dict[str, Any]] = []

    async def send_email(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> bool:
        self.emails.append({"to": to, "subject": subject, "template": template, "data": data})
        return self.succeed

    async def send_sms(self, number: str, message: str) -> bool:
        self.sms.append({"number": number, "message": message})
        return self.succeed


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=TEST_DATABASE_URL,
        HASH_SALT_ROUND=4,
        ACCESS_TOKEN_SECRET="test-access-token-secret-0123456789abcdef",
        ACCESS_TOKEN_EXPIRATION=15,
        REFRESH_TOKEN_SECRET="test-refresh-token-secret-0123456789abcdef",
        REFRESH_TOKEN_EXPIRATION=60,
        PASSWORD_RESET_TOKEN_SECRET="test-reset-token-secret-0123456789abcdef",
        PASSWORD_RESET_TOKEN_EXPIRATION=10,
        ACCOUNT_VERIFICATION_TOKEN_SECRET="test-verify-token-secret-0123456789abcdef",
        EMAIL_VERIFICATION_TOKEN_EXPIRATION=30,
    )


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async with build_sessionmaker(db_engine)() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def hasher(test_settings: Settings) -> PasswordHasher:
    return PasswordHasher(test_settings.HASH_SALT_ROUND)


@pytest.fixture
def codec(test_settings: Settings) -> TokenCodec:
    return TokenCodec(test_settings)


@pytest.fixture
def auth_service(
    db_session: AsyncSession,
    test_settings: Settings,
    notifier: RecordingNotifier,
    hasher: PasswordHasher,
    codec: TokenCodec,
) -> AuthenticationService:
    return AuthenticationService(db_session, test_settings, notifier, hasher=hasher, codec=codec)


@pytest.fixture
def user_service(db_session: AsyncSession, hasher: PasswordHasher) -> UserService:
    return UserService(db_session, hasher)


@pytest.fixture
def user_data() -> Dict[str, Any]:
    return {
        "name": "Test User",
        "username": "testuser",
        "email": "user@example.com",
        "contact_number": "01712345678",
        "password": TEST_PASSWORD,
        "date_of_birth": date(1990, 1, 1),
        "gender": Gender.FEMALE,
        "role": UserRole.PATIENT,
    }


@pytest.fixture
async def unverified_user(user_service: UserService, user_data: Dict[str, Any]) -> User:
    return await user_service.register_user(user_data)


@pytest.fixture
async def test_user(db_session: AsyncSession, unverified_user: User) -> User:
    """A registered user marked verified directly in the store."""
    unverified_user.verified = True
    await db_session.commit()
    return unverified_user


@pytest.fixture
async def admin_user(user_service: UserService, db_session: AsyncSession) -> User:
    user = await user_service.register_user({
        "name": "Admin User",
        "username": "admin",
        "email": "admin@example.com",
        "contact_number": "01898765432",
        "password": "Adminpass123",
    })
    # Registration always yields a patient; the admin role is granted in the store
    user.role = UserRole.ADMIN
    user.verified = True
    await db_session.commit()
    return user


@pytest.fixture
async def client(
    db_engine: AsyncEngine,
    test_settings: Settings,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database, settings and delivery overrides."""
    session_factory = build_sessionmaker(db_engine)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_notification_service] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "auth: mark test as authentication related"
    )
