"""RS256 access and refresh token issuance and validation."""

import hashlib
import math
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
import uuid_utils

from authcore.core.clock import Clock, utc_now
from authcore.core.errors import KeyNotFoundError
from authcore.core.logging import get_logger
from authcore.core.settings import TokenSettings
from authcore.crypto.key_manager import KeyManager
from authcore.crypto.keys import (
    generate_rsa_keypair,
    pem_to_jwk_entry,
    public_pem_from_private,
)
from authcore.crypto.types import (
    InvalidReason,
    IssuedToken,
    JWKSResponse,
    SigningKeyData,
    SubjectClaims,
    TokenInvalid,
    TokenKind,
    TokenPayload,
    TokenValid,
    ValidationResult,
)

logger = get_logger(__name__)

ALGORITHM = "RS256"
MIN_TOKEN_TTL = timedelta(seconds=1)
REFRESH_TOKEN_TYPE = "refresh"

_DECODE_OPTIONS: dict[str, Any] = {
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "require": ["sub", "jti", "iss", "aud", "iat", "exp"],
}


def _unverified_payload(token: str) -> dict[str, Any] | None:
    """Decode the payload segment without any signature or claim checks."""
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except (jwt.PyJWTError, ValueError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_subject(token: str) -> str | None:
    """Best-effort ``sub`` claim; ``None`` for anything unparseable."""
    payload = _unverified_payload(token)
    sub = payload.get("sub") if payload else None
    return str(sub) if sub is not None else None


def extract_jti(token: str) -> str | None:
    """Best-effort ``jti`` claim; ``None`` for anything unparseable."""
    payload = _unverified_payload(token)
    jti = payload.get("jti") if payload else None
    return str(jti) if jti is not None else None


def _extract_timestamp(token: str, claim: str) -> datetime | None:
    payload = _unverified_payload(token)
    if not payload:
        return None
    value = payload.get(claim)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        return datetime.fromtimestamp(value, UTC)
    except (OverflowError, OSError, ValueError):
        return None


def extract_expiry(token: str) -> datetime | None:
    """Best-effort ``exp`` as an aware datetime."""
    return _extract_timestamp(token, "exp")


def extract_issued_at(token: str) -> datetime | None:
    """Best-effort ``iat`` as an aware datetime."""
    return _extract_timestamp(token, "iat")


def _development_key(settings: TokenSettings) -> SigningKeyData:
    if settings.development_private_key:
        public_pem = public_pem_from_private(settings.development_private_key)
        kid = "dev-" + hashlib.sha256(public_pem.encode()).hexdigest()[:16]
        logger.warning("development_signing_key_configured", kid=kid)
        return SigningKeyData(
            kid=kid,
            private_key_pem=settings.development_private_key,
            public_key_pem=public_pem,
            is_active=True,
        )
    logger.warning("development_signing_key_generated")
    key = generate_rsa_keypair()
    key.is_active = True
    return key


class TokenIssuer:
    """Creates and verifies RS256-signed access and refresh tokens.

    Keys come from ``KeyManager`` when one is configured. Without a key
    backend a single bootstrap key (configured PEM or an ephemeral one) both
    signs and verifies.
    """

    def __init__(
        self,
        settings: TokenSettings,
        key_manager: KeyManager | None = None,
        *,
        fallback_key: SigningKeyData | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._keys = key_manager
        self._clock = clock
        self._fallback = fallback_key
        if key_manager is None and fallback_key is None:
            self._fallback = _development_key(settings)

    def fallback_jwks(self) -> JWKSResponse:
        """JWKS for the bootstrap key; empty when keys are managed."""
        if self._fallback is None:
            return JWKSResponse(keys=[])
        return JWKSResponse(
            keys=[pem_to_jwk_entry(self._fallback.public_key_pem, self._fallback.kid)]
        )

    def _ttl(self, kind: TokenKind) -> timedelta:
        ttl = (
            self._settings.access_ttl
            if kind is TokenKind.ACCESS
            else self._settings.refresh_ttl
        )
        return max(ttl, MIN_TOKEN_TTL)

    async def _signing_key(self) -> SigningKeyData:
        if self._keys is not None:
            return await self._keys.current_signing_key()
        assert self._fallback is not None
        return self._fallback

    async def _verification_key(self, kid: str) -> SigningKeyData:
        if self._keys is not None:
            return await self._keys.verification_key(kid)
        assert self._fallback is not None
        return self._fallback

    async def issue(self, kind: TokenKind, subject: SubjectClaims) -> IssuedToken:
        """Sign a new token of ``kind`` for ``subject``."""
        key = await self._signing_key()
        now = self._clock()
        # exp rounds up so a fractional-second clock never shortens the TTL
        exp = math.ceil((now + self._ttl(kind)).timestamp())
        jti = str(uuid_utils.uuid4())
        payload: dict[str, Any] = {
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
            "sub": subject.sub,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": exp,
        }
        if kind is TokenKind.REFRESH:
            payload["token_type"] = REFRESH_TOKEN_TYPE
        else:
            if subject.name is not None:
                payload["name"] = subject.name
            if subject.email is not None:
                payload["email"] = subject.email
            if subject.roles:
                payload["roles"] = subject.roles
        token = jwt.encode(
            payload,
            key.private_key_pem,
            algorithm=ALGORITHM,
            headers={"kid": key.kid},
        )
        return IssuedToken(
            token=token,
            jti=jti,
            kid=key.kid,
            expires_at=datetime.fromtimestamp(exp, UTC),
        )

    async def issue_access(self, subject: SubjectClaims) -> IssuedToken:
        return await self.issue(TokenKind.ACCESS, subject)

    async def issue_refresh(self, subject: SubjectClaims) -> IssuedToken:
        return await self.issue(TokenKind.REFRESH, subject)

    def _invalid(self, reason: InvalidReason, **context: Any) -> TokenInvalid:
        logger.debug("token_validation_failed", reason=reason.value, **context)
        return TokenInvalid(reason=reason)

    async def validate(
        self, token: str, expected_kind: TokenKind | None = None
    ) -> ValidationResult:
        """Verify signature, issuer, audience and expiry with zero skew.

        Never raises for bad input: every failure becomes ``TokenInvalid``.
        """
        try:
            header = jwt.get_unverified_header(token)
        except (jwt.PyJWTError, ValueError, TypeError):
            return self._invalid(InvalidReason.MALFORMED)

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            return self._invalid(InvalidReason.MALFORMED, detail="missing kid")
        if header.get("alg") != ALGORITHM:
            return self._invalid(InvalidReason.MALFORMED, detail="unexpected alg")

        try:
            key = await self._verification_key(kid)
        except KeyNotFoundError:
            return self._invalid(InvalidReason.KEY_NOT_FOUND, kid=kid)

        try:
            raw = jwt.decode(
                token,
                key.public_key_pem,
                algorithms=[ALGORITHM],
                issuer=self._settings.issuer,
                audience=self._settings.audience,
                options=_DECODE_OPTIONS,
            )
        except jwt.InvalidSignatureError:
            return self._invalid(InvalidReason.BAD_SIGNATURE, kid=kid)
        except jwt.InvalidIssuerError:
            return self._invalid(InvalidReason.BAD_ISSUER, kid=kid)
        except jwt.InvalidAudienceError:
            return self._invalid(InvalidReason.BAD_AUDIENCE, kid=kid)
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            return self._invalid(InvalidReason.MALFORMED, kid=kid, detail=str(exc))

        try:
            claims = TokenPayload.model_validate(raw)
        except ValueError:
            return self._invalid(InvalidReason.MALFORMED, kid=kid)

        if self._clock().timestamp() >= claims.exp:
            return self._invalid(InvalidReason.EXPIRED, kid=kid, jti=claims.jti)

        if expected_kind is not None:
            is_refresh = claims.token_type == REFRESH_TOKEN_TYPE
            if is_refresh != (expected_kind is TokenKind.REFRESH):
                return self._invalid(InvalidReason.WRONG_TYPE, kid=kid, jti=claims.jti)

        return TokenValid(claims=claims)

    extract_subject = staticmethod(extract_subject)
    extract_jti = staticmethod(extract_jti)
    extract_expiry = staticmethod(extract_expiry)
    extract_issued_at = staticmethod(extract_issued_at)
