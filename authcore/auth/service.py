"""Public facade over the login, refresh and session workflows."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from authcore.auth.audit import AuditEvent, AuditSink, SafeAudit
from authcore.auth.login import LoginOrchestrator
from authcore.auth.refresh import RefreshOrchestrator
from authcore.auth.types import LoginResult, RequestContext, TokenPair, UserDirectory
from authcore.core.clock import Clock, utc_now
from authcore.core.errors import (
    AccountLockedError,
    AuthError,
    InternalAuthError,
    TokenExpiredError,
    TokenInvalidError,
    TokenMalformedError,
    UserNotFoundError,
)
from authcore.core.logging import get_logger
from authcore.crypto.key_manager import KeyManager
from authcore.crypto.token_issuer import TokenIssuer, extract_jti
from authcore.crypto.types import (
    InvalidReason,
    JWKSResponse,
    TokenInvalid,
    TokenKind,
    TokenPayload,
    ValidationResult,
)
from authcore.db.models_session import SessionEntity
from authcore.db.repo_sessions import SessionStore
from authcore.security.lockout import LockoutGuard
from authcore.security.rate_limiter import RateLimiter

logger = get_logger(__name__)


@asynccontextmanager
async def _opaque_failures(operation: str) -> AsyncIterator[None]:
    """Let domain errors through; log anything else and hide it."""
    try:
        yield
    except AuthError:
        raise
    except Exception as exc:
        logger.exception("auth_operation_failed", operation=operation)
        raise InternalAuthError() from exc


class AuthService:
    """Everything a transport layer needs, behind one object.

    Domain failures surface as ``AuthError`` subclasses. Storage or crypto
    failures are logged here with full context and re-raised as
    ``InternalAuthError`` so callers never see backend details.
    """

    def __init__(
        self,
        *,
        users: UserDirectory,
        issuer: TokenIssuer,
        sessions: SessionStore,
        rate_limiter: RateLimiter,
        lockout: LockoutGuard,
        audit: AuditSink,
        key_manager: KeyManager | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._users = users
        self._issuer = issuer
        self._sessions = sessions
        self._lockout = lockout
        self._keys = key_manager
        self._audit = SafeAudit(audit)
        self._clock = clock
        self._login = LoginOrchestrator(
            users=users,
            rate_limiter=rate_limiter,
            lockout=lockout,
            issuer=issuer,
            sessions=sessions,
            audit=audit,
            clock=clock,
        )
        self._refresh = RefreshOrchestrator(
            users=users,
            lockout=lockout,
            issuer=issuer,
            sessions=sessions,
            audit=audit,
            clock=clock,
        )

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def key_manager(self) -> KeyManager | None:
        return self._keys

    async def login(
        self, identity: str, secret: str, context: RequestContext | None = None
    ) -> LoginResult:
        async with _opaque_failures("login"):
            return await self._login.login(identity, secret, context or RequestContext())

    async def refresh(
        self, refresh_token: str, context: RequestContext | None = None
    ) -> TokenPair:
        async with _opaque_failures("refresh"):
            return await self._refresh.refresh(refresh_token, context or RequestContext())

    async def validate_access_token(self, token: str) -> ValidationResult:
        """Stateless check: signature, issuer, audience, expiry and kind."""
        async with _opaque_failures("validate_access_token"):
            return await self._issuer.validate(token, expected_kind=TokenKind.ACCESS)

    async def verify_access_token(self, token: str) -> TokenPayload:
        """Validate, then require the subject to exist and not be locked."""
        result = await self.validate_access_token(token)
        if isinstance(result, TokenInvalid):
            if result.reason is InvalidReason.EXPIRED:
                raise TokenExpiredError()
            raise TokenMalformedError()

        async with _opaque_failures("verify_access_token"):
            user = await self._users.find_by_id(result.claims.sub)
            if user is None:
                raise TokenInvalidError("Token subject no longer exists")
            locked_until = await self._lockout.locked_until(user.id)
        if locked_until is not None:
            raise AccountLockedError(locked_until)
        return result.claims

    async def logout_session(
        self, jti: str, context: RequestContext | None = None
    ) -> None:
        """End the session owning ``jti``; unknown ids are not an error."""
        ip = (context or RequestContext()).ip_address
        async with _opaque_failures("logout"):
            session = await self._sessions.get_by_jti(jti)
            if session is None:
                await self._audit(
                    AuditEvent.LOGOUT_FAILED, ip_address=ip, details="Session not found"
                )
                return
            await self._sessions.revoke(jti)
        await self._audit(AuditEvent.LOGOUT_SUCCESS, user_id=session.user_id, ip_address=ip)

    async def logout(
        self, refresh_token: str, context: RequestContext | None = None
    ) -> None:
        """Logout by refresh token; its signature is not checked, only its jti."""
        jti = extract_jti(refresh_token)
        if jti is None:
            await self._audit(
                AuditEvent.LOGOUT_FAILED,
                ip_address=(context or RequestContext()).ip_address,
                details="Malformed refresh token",
            )
            raise TokenMalformedError()
        await self.logout_session(jti, context)

    async def logout_all(
        self, user_id: str, context: RequestContext | None = None
    ) -> int:
        ip = (context or RequestContext()).ip_address
        async with _opaque_failures("logout_all"):
            user = await self._users.find_by_id(user_id)
            if user is None:
                await self._audit(
                    AuditEvent.LOGOUT_ALL_FAILED,
                    user_id=user_id,
                    ip_address=ip,
                    details="User not found",
                )
                raise UserNotFoundError(user_id)
            count = await self._sessions.revoke_all(user_id)
        await self._audit(
            AuditEvent.LOGOUT_ALL_SUCCESS,
            user_id=user_id,
            identity=user.username,
            ip_address=ip,
            details=f"Terminated {count} sessions",
        )
        return count

    async def list_sessions(self, user_id: str) -> list[SessionEntity]:
        async with _opaque_failures("list_sessions"):
            return await self._sessions.list_active(user_id)

    async def lock_account(
        self, user_id: str, duration: timedelta | None = None
    ) -> datetime:
        async with _opaque_failures("lock_account"):
            until = await self._lockout.lock(user_id, duration)
        await self._audit(
            AuditEvent.ACCOUNT_LOCKED, user_id=user_id, details="Locked by administrator"
        )
        return until

    async def unlock_account(self, user_id: str) -> None:
        async with _opaque_failures("unlock_account"):
            await self._lockout.unlock(user_id)
        await self._audit(
            AuditEvent.ACCOUNT_UNLOCKED, user_id=user_id, details="Unlocked by administrator"
        )

    async def jwks(self) -> JWKSResponse:
        """Published verification keys; the bootstrap key when unmanaged."""
        async with _opaque_failures("jwks"):
            if self._keys is not None:
                return await self._keys.jwks()
            return self._issuer.fallback_jwks()
