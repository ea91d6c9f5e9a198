"""Tests for RS256 token issuance and validation."""

from datetime import timedelta
from pathlib import Path

import jwt
import pytest

from authcore.core.settings import TokenSettings
from authcore.crypto.key_manager import KeyManager
from authcore.crypto.key_store import FileKeyStore
from authcore.crypto.keys import generate_rsa_keypair
from authcore.crypto.token_issuer import (
    TokenIssuer,
    extract_expiry,
    extract_issued_at,
    extract_jti,
    extract_subject,
)
from authcore.crypto.types import (
    InvalidReason,
    SubjectClaims,
    TokenInvalid,
    TokenKind,
    TokenValid,
)

SUBJECT = SubjectClaims(sub="user-1", name="Alice", email="alice@example.com", roles=["admin"])


@pytest.fixture
def settings() -> TokenSettings:
    return TokenSettings(
        issuer="https://auth.test",
        audience="authcore-tests",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60,
    )


@pytest.fixture
def key_manager(tmp_path: Path, fernet_key: str, clock) -> KeyManager:
    return KeyManager(
        FileKeyStore(tmp_path, fernet_key), key_lifetime=timedelta(days=90), clock=clock
    )


@pytest.fixture
def issuer(settings: TokenSettings, key_manager: KeyManager, clock) -> TokenIssuer:
    return TokenIssuer(settings, key_manager, clock=clock)


class TestIssue:
    """Tests for token issuance."""

    async def test_access_round_trip(self, issuer: TokenIssuer, clock) -> None:
        issued = await issuer.issue_access(SUBJECT)
        result = await issuer.validate(issued.token)

        assert isinstance(result, TokenValid)
        claims = result.claims
        assert claims.sub == "user-1"
        assert claims.jti == issued.jti
        assert claims.name == "Alice"
        assert claims.email == "alice@example.com"
        assert claims.roles == ["admin"]
        assert claims.iss == "https://auth.test"
        assert claims.aud == "authcore-tests"
        assert claims.token_type is None
        assert issued.expires_at == clock() + timedelta(minutes=15)

    async def test_header_carries_kid(self, issuer: TokenIssuer, key_manager: KeyManager) -> None:
        issued = await issuer.issue_access(SUBJECT)
        header = jwt.get_unverified_header(issued.token)
        active = await key_manager.current_signing_key()
        assert header["kid"] == active.kid == issued.kid
        assert header["alg"] == "RS256"

    async def test_refresh_token_is_minimal(self, issuer: TokenIssuer, clock) -> None:
        issued = await issuer.issue_refresh(SUBJECT)
        payload = jwt.decode(issued.token, options={"verify_signature": False})
        assert payload["token_type"] == "refresh"
        assert "roles" not in payload
        assert "email" not in payload
        assert issued.expires_at == clock() + timedelta(minutes=60)

    async def test_jtis_unique(self, issuer: TokenIssuer) -> None:
        tokens = [await issuer.issue_access(SUBJECT) for _ in range(5)]
        assert len({t.jti for t in tokens}) == 5

    async def test_ttl_floor_of_one_second(self, key_manager: KeyManager, clock) -> None:
        settings = TokenSettings(
            issuer="https://auth.test", audience="a", access_token_ttl_minutes=0
        )
        issuer = TokenIssuer(settings, key_manager, clock=clock)
        issued = await issuer.issue_access(SUBJECT)
        assert issued.expires_at == clock() + timedelta(seconds=1)

    async def test_ttl_floor_holds_mid_second(self, key_manager: KeyManager, clock) -> None:
        settings = TokenSettings(
            issuer="https://auth.test", audience="a", access_token_ttl_minutes=0
        )
        issuer = TokenIssuer(settings, key_manager, clock=clock)
        now = clock.advance(seconds=0.9)
        issued = await issuer.issue_access(SUBJECT)
        assert issued.expires_at - now >= timedelta(seconds=1)

        clock.advance(seconds=1)
        assert isinstance(await issuer.validate(issued.token), TokenValid)

    async def test_full_ttl_mid_second(self, issuer: TokenIssuer, clock) -> None:
        now = clock.advance(seconds=0.5)
        issued = await issuer.issue_access(SUBJECT)
        assert issued.expires_at - now >= timedelta(minutes=15)
        assert issued.expires_at - now < timedelta(minutes=15, seconds=1)


class TestValidate:
    """Tests for token validation."""

    async def test_expires_exactly_at_exp(self, issuer: TokenIssuer, clock) -> None:
        issued = await issuer.issue_access(SUBJECT)
        clock.advance(minutes=15, seconds=-1)
        assert isinstance(await issuer.validate(issued.token), TokenValid)
        clock.advance(seconds=1)
        result = await issuer.validate(issued.token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.EXPIRED

    async def test_token_survives_rotation(
        self, issuer: TokenIssuer, key_manager: KeyManager
    ) -> None:
        issued = await issuer.issue_access(SUBJECT)
        new_kid = await key_manager.rotate()
        assert new_kid != issued.kid
        assert isinstance(await issuer.validate(issued.token), TokenValid)
        reissued = await issuer.issue_access(SUBJECT)
        assert reissued.kid == new_kid

    async def test_unknown_kid(self, issuer: TokenIssuer, settings: TokenSettings) -> None:
        stranger = generate_rsa_keypair()
        token = jwt.encode(
            {"sub": "x", "jti": "j", "iss": settings.issuer, "aud": settings.audience,
             "iat": 0, "exp": 4_000_000_000},
            stranger.private_key_pem,
            algorithm="RS256",
            headers={"kid": stranger.kid},
        )
        result = await issuer.validate(token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.KEY_NOT_FOUND

    async def test_forged_signature_with_known_kid(
        self, issuer: TokenIssuer, settings: TokenSettings, key_manager: KeyManager
    ) -> None:
        active = await key_manager.current_signing_key()
        stranger = generate_rsa_keypair()
        token = jwt.encode(
            {"sub": "x", "jti": "j", "iss": settings.issuer, "aud": settings.audience,
             "iat": 0, "exp": 4_000_000_000},
            stranger.private_key_pem,
            algorithm="RS256",
            headers={"kid": active.kid},
        )
        result = await issuer.validate(token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.BAD_SIGNATURE

    async def test_wrong_issuer(
        self, key_manager: KeyManager, settings: TokenSettings, issuer: TokenIssuer, clock
    ) -> None:
        other = TokenIssuer(
            settings.model_copy(update={"issuer": "https://evil.test"}), key_manager, clock=clock
        )
        issued = await other.issue_access(SUBJECT)
        result = await issuer.validate(issued.token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.BAD_ISSUER

    async def test_wrong_audience(
        self, key_manager: KeyManager, settings: TokenSettings, issuer: TokenIssuer, clock
    ) -> None:
        other = TokenIssuer(
            settings.model_copy(update={"audience": "someone-else"}), key_manager, clock=clock
        )
        issued = await other.issue_access(SUBJECT)
        result = await issuer.validate(issued.token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.BAD_AUDIENCE

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "e30.e30.sig"])
    async def test_malformed(self, issuer: TokenIssuer, garbage: str) -> None:
        result = await issuer.validate(garbage)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.MALFORMED

    async def test_alg_none_rejected(self, issuer: TokenIssuer, settings: TokenSettings) -> None:
        token = jwt.encode(
            {"sub": "x", "jti": "j", "iss": settings.issuer, "aud": settings.audience,
             "iat": 0, "exp": 4_000_000_000},
            None,
            algorithm="none",
            headers={"kid": "whatever"},
        )
        result = await issuer.validate(token)
        assert isinstance(result, TokenInvalid)
        assert result.reason is InvalidReason.MALFORMED

    async def test_expected_kind(self, issuer: TokenIssuer) -> None:
        access = await issuer.issue_access(SUBJECT)
        refresh = await issuer.issue_refresh(SUBJECT)

        wrong = await issuer.validate(access.token, expected_kind=TokenKind.REFRESH)
        assert isinstance(wrong, TokenInvalid)
        assert wrong.reason is InvalidReason.WRONG_TYPE
        wrong = await issuer.validate(refresh.token, expected_kind=TokenKind.ACCESS)
        assert isinstance(wrong, TokenInvalid)
        assert wrong.reason is InvalidReason.WRONG_TYPE

        assert isinstance(
            await issuer.validate(refresh.token, expected_kind=TokenKind.REFRESH), TokenValid
        )


class TestFallbackKey:
    """Tests for the bootstrap signing key."""

    async def test_signs_and_verifies_without_key_manager(
        self, settings: TokenSettings, clock
    ) -> None:
        issuer = TokenIssuer(settings, clock=clock)
        issued = await issuer.issue_access(SUBJECT)
        assert isinstance(await issuer.validate(issued.token), TokenValid)
        jwks = issuer.fallback_jwks()
        assert [k.kid for k in jwks.keys] == [issued.kid]

    async def test_configured_pem_gives_stable_kid(self, settings: TokenSettings, clock) -> None:
        pem = generate_rsa_keypair().private_key_pem
        configured = settings.model_copy(update={"development_private_key": pem})
        first = await TokenIssuer(configured, clock=clock).issue_access(SUBJECT)
        second = await TokenIssuer(configured, clock=clock).issue_access(SUBJECT)
        assert first.kid == second.kid
        assert first.kid.startswith("dev-")

    async def test_managed_issuer_has_empty_fallback_jwks(self, issuer: TokenIssuer) -> None:
        assert issuer.fallback_jwks().keys == []


class TestExtractors:
    """Tests for unverified claim extraction."""

    async def test_extract_from_valid_token(self, issuer: TokenIssuer, clock) -> None:
        issued = await issuer.issue_access(SUBJECT)
        assert extract_subject(issued.token) == "user-1"
        assert extract_jti(issued.token) == issued.jti
        assert extract_expiry(issued.token) == issued.expires_at
        assert extract_issued_at(issued.token) == clock()

    async def test_extract_from_expired_token(self, issuer: TokenIssuer, clock) -> None:
        issued = await issuer.issue_access(SUBJECT)
        clock.advance(hours=2)
        assert extract_jti(issued.token) == issued.jti
        assert TokenIssuer.extract_subject(issued.token) == "user-1"

    @pytest.mark.parametrize("garbage", ["", "junk", "a.b.c"])
    def test_garbage_yields_none(self, garbage: str) -> None:
        assert extract_subject(garbage) is None
        assert extract_jti(garbage) is None
        assert extract_expiry(garbage) is None
        assert extract_issued_at(garbage) is None
