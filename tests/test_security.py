import pytest
from datetime import timedelta

import jwt

from telecare.core.config import Settings
from telecare.core.security import (
    PasswordHasher,
    TokenCodec,
    TokenType,
    generate_verification_code,
    utcnow,
)
from telecare.domain.auth.identifiers import IdentifierKind, classify


CLAIMS = {
    "userId": "3f1c2a5e-8d7b-4c1e-9a2f-0b6d4e8f1a23",
    "userRole": "patient",
    "userIP": "1.2.3.4",
}


@pytest.mark.unit
class TestTokenCodec:
    """Test signing and verification of the four token kinds."""

    @pytest.mark.parametrize("token_type", list(TokenType))
    def test_issue_then_verify_returns_claims(self, codec: TokenCodec, token_type: TokenType) -> None:
        token = codec.issue(CLAIMS, token_type)

        decoded = codec.verify(token, token_type)

        assert decoded is not None
        assert {k: decoded[k] for k in CLAIMS} == CLAIMS
        assert set(decoded) == set(CLAIMS) | {"exp"}

    def test_expiry_matches_configured_lifetime(self, test_settings: Settings) -> None:
        now = utcnow()
        codec = TokenCodec(test_settings, clock=lambda: now)

        _, expires = codec.issue_with_expiry(CLAIMS, TokenType.PASSWORD_RESET)

        assert expires == now + timedelta(minutes=test_settings.PASSWORD_RESET_TOKEN_EXPIRATION)

    def test_token_of_another_type_is_rejected(self, codec: TokenCodec) -> None:
        token = codec.issue(CLAIMS, TokenType.ACCESS)

        assert codec.verify(token, TokenType.REFRESH) is None
        assert codec.verify(token, TokenType.PASSWORD_RESET) is None

    def test_tampered_token_is_rejected(self, codec: TokenCodec) -> None:
        header, payload, signature = codec.issue(CLAIMS, TokenType.ACCESS).split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

        assert codec.verify(f"{header}.{payload}.{flipped}", TokenType.ACCESS) is None

    def test_foreign_secret_is_rejected(self, codec: TokenCodec) -> None:
        forged = jwt.encode(
            {**CLAIMS, "exp": utcnow() + timedelta(minutes=5)},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )

        assert codec.verify(forged, TokenType.ACCESS) is None

    def test_expired_token_is_rejected(self, test_settings: Settings, codec: TokenCodec) -> None:
        past = TokenCodec(test_settings, clock=lambda: utcnow() - timedelta(hours=2))
        token = past.issue(CLAIMS, TokenType.ACCESS)

        assert codec.verify(token, TokenType.ACCESS) is None

    def test_token_without_exp_is_rejected(self, test_settings: Settings, codec: TokenCodec) -> None:
        token = jwt.encode(CLAIMS, test_settings.ACCESS_TOKEN_SECRET, algorithm="HS256")

        assert codec.verify(token, TokenType.ACCESS) is None

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
    def test_malformed_input_is_rejected(self, codec: TokenCodec, token) -> None:
        assert codec.verify(token, TokenType.ACCESS) is None


@pytest.mark.unit
class TestVerificationCode:

    def test_code_is_six_digits_in_range(self) -> None:
        for _ in range(500):
            code = generate_verification_code()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self) -> None:
        codes = {generate_verification_code() for _ in range(50)}
        assert len(codes) > 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestPasswordHasher:
    """Test bcrypt hashing through the threadpool."""

    async def test_hash_and_verify(self, hasher: PasswordHasher) -> None:
        hashed = await hasher.hash("Secret123")

        assert hashed != "Secret123"
        assert hashed.startswith("$2")
        assert await hasher.verify("Secret123", hashed)
        assert not await hasher.verify("Secret124", hashed)

    async def test_same_password_gets_different_salts(self, hasher: PasswordHasher) -> None:
        assert await hasher.hash("Secret123") != await hasher.hash("Secret123")

    async def test_verify_without_hash_is_false(self, hasher: PasswordHasher) -> None:
        assert not await hasher.verify("Secret123", None)
        assert not await hasher.verify("Secret123", "not-a-bcrypt-hash")


@pytest.mark.unit
class TestIdentifierClassification:

    def test_email(self) -> None:
        identifier = classify("  user@example.com ")
        assert identifier.kind == IdentifierKind.EMAIL
        assert identifier.field == "email"
        assert identifier.value == "user@example.com"

    def test_contact_number(self) -> None:
        identifier = classify("01712345678")
        assert identifier.kind == IdentifierKind.CONTACT_NUMBER
        assert identifier.field == "contact_number"

    @pytest.mark.parametrize("value", ["testuser", "0171234567", "017123456789", "user@"])
    def test_anything_else_is_a_username(self, value: str) -> None:
        identifier = classify(value)
        assert identifier.kind == IdentifierKind.USERNAME
        assert identifier.value == value
