"""Single-use refresh token rotation."""

from authcore.auth.audit import AuditEvent, AuditSink, SafeAudit
from authcore.auth.login import issue_token_pair
from authcore.auth.types import RequestContext, TokenPair, UserDirectory
from authcore.core.clock import Clock, as_utc, utc_now
from authcore.core.errors import (
    AccountLockedError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenMalformedError,
)
from authcore.core.logging import get_logger
from authcore.crypto.token_issuer import TokenIssuer
from authcore.crypto.types import InvalidReason, TokenInvalid, TokenKind
from authcore.db.repo_sessions import SessionStore
from authcore.security.lockout import LockoutGuard

logger = get_logger(__name__)


class RefreshOrchestrator:
    """Redeems a refresh token exactly once for a new token pair."""

    def __init__(
        self,
        *,
        users: UserDirectory,
        lockout: LockoutGuard,
        issuer: TokenIssuer,
        sessions: SessionStore,
        audit: AuditSink,
        clock: Clock = utc_now,
    ) -> None:
        self._users = users
        self._lockout = lockout
        self._issuer = issuer
        self._sessions = sessions
        self._audit = SafeAudit(audit)
        self._clock = clock

    async def _fail(
        self, details: str, ip: str | None, user_id: str | None = None
    ) -> None:
        await self._audit(
            AuditEvent.TOKEN_REFRESH_FAILED,
            user_id=user_id,
            ip_address=ip,
            details=details,
        )

    async def refresh(self, refresh_token: str, context: RequestContext) -> TokenPair:
        ip = context.ip_address

        result = await self._issuer.validate(refresh_token, expected_kind=TokenKind.REFRESH)
        if isinstance(result, TokenInvalid):
            await self._fail("Invalid refresh token", ip)
            if result.reason is InvalidReason.EXPIRED:
                raise TokenExpiredError()
            raise TokenMalformedError()

        jti = result.claims.jti
        session = await self._sessions.get_by_jti(jti)
        if session is None or as_utc(session.expires_at) <= self._clock():
            await self._fail("Session not found or expired", ip)
            raise SessionNotFoundError()
        if session.user_id != result.claims.sub:
            logger.warning(
                "refresh_subject_mismatch", jti=jti, session_user=session.user_id
            )
            await self._fail("Session subject mismatch", ip, session.user_id)
            raise SessionNotFoundError()

        user = await self._users.find_by_id(session.user_id)
        if user is None:
            await self._fail("User not found for session", ip, session.user_id)
            raise SessionNotFoundError()

        locked_until = await self._lockout.locked_until(user.id)
        if locked_until is not None:
            await self._sessions.revoke(jti)
            await self._audit(
                AuditEvent.TOKEN_REFRESH_FAILED,
                user_id=user.id,
                identity=user.username,
                ip_address=ip,
                details="User account is locked",
            )
            raise AccountLockedError(locked_until)

        access, refresh = await issue_token_pair(self._issuer, user)
        new_session = await self._sessions.rotate(
            jti,
            user_id=user.id,
            new_jti=refresh.jti,
            device_info=context.device_info or session.device_info,
            ip_address=ip or session.ip_address,
        )
        await self._audit(
            AuditEvent.TOKEN_REFRESH_SUCCESS,
            user_id=user.id,
            identity=user.username,
            ip_address=ip,
        )
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_token_expires_at=access.expires_at,
            refresh_token_expires_at=refresh.expires_at,
            session_id=new_session.session_id,
            user_id=user.id,
        )
