"""Type definitions for signing keys, JWKS, and JWT operations."""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SigningKeyData(BaseModel):
    """An RSA keypair for JWT signing, with lifecycle metadata."""

    kid: str
    private_key_pem: str
    public_key_pem: str
    created_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = False


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = "sig"
    alg: str = "RS256"
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]


class TokenKind(StrEnum):
    """The two token shapes the issuer produces."""

    ACCESS = "access"
    REFRESH = "refresh"


class SubjectClaims(BaseModel):
    """Identity facts about the subject a token is issued for."""

    sub: str
    name: str | None = None
    email: str | None = None
    roles: list[str] = Field(default_factory=list)


class IssuedToken(BaseModel):
    """A freshly signed compact token plus the fields callers track."""

    token: str
    jti: str
    kid: str
    expires_at: datetime


class TokenPayload(BaseModel):
    """Decoded and verified JWT claims."""

    model_config = ConfigDict(extra="allow")

    sub: str
    jti: str
    iss: str
    aud: str
    iat: int
    exp: int
    name: str | None = None
    email: str | None = None
    roles: list[str] = Field(default_factory=list)
    token_type: str | None = None


class InvalidReason(StrEnum):
    """Internal reason a token was rejected."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    KEY_NOT_FOUND = "key_not_found"
    BAD_SIGNATURE = "bad_signature"
    BAD_ISSUER = "bad_issuer"
    BAD_AUDIENCE = "bad_audience"
    WRONG_TYPE = "wrong_type"


class TokenValid(BaseModel):
    """Validation succeeded."""

    valid: Literal[True] = True
    claims: TokenPayload


class TokenInvalid(BaseModel):
    """Validation failed; ``reason`` is for logs and tests, not end users."""

    valid: Literal[False] = False
    reason: InvalidReason


ValidationResult = TokenValid | TokenInvalid
