"""Login workflow.

Stages run in order and the first failure ends the attempt:

1. rate limiter admission for the supplied identity
2. user lookup; an unknown identity is reported as invalid credentials
3. lockout check; a locked account is reported as locked, with its end time
4. credential check; failures feed both the lockout counter and the limiter
5. counters reset on success
6. accounts with MFA get a challenge and no tokens
7. otherwise an access/refresh pair is issued and a session stored

Unknown users and wrong passwords are indistinguishable to the caller, while
lock and rate-limit state is disclosed. That asymmetry is product behaviour.
"""

from authcore.auth.audit import AuditEvent, AuditSink, SafeAudit
from authcore.auth.types import (
    ChallengeRequired,
    LoginResult,
    RequestContext,
    TokenPair,
    UserAccount,
    UserDirectory,
)
from authcore.core.clock import Clock, utc_now
from authcore.core.errors import (
    AccountLockedError,
    InvalidCredentialsError,
    RateLimitedError,
)
from authcore.core.logging import get_logger
from authcore.crypto.token_issuer import TokenIssuer
from authcore.crypto.types import IssuedToken, SubjectClaims
from authcore.db.repo_sessions import SessionStore
from authcore.security.lockout import LockoutGuard
from authcore.security.rate_limiter import RateLimiter

logger = get_logger(__name__)


def subject_claims(user: UserAccount) -> SubjectClaims:
    return SubjectClaims(
        sub=user.id,
        name=user.name or user.username,
        email=user.email,
        roles=user.roles,
    )


async def issue_token_pair(
    issuer: TokenIssuer, user: UserAccount
) -> tuple[IssuedToken, IssuedToken]:
    subject = subject_claims(user)
    access = await issuer.issue_access(subject)
    refresh = await issuer.issue_refresh(subject)
    return access, refresh


class LoginOrchestrator:
    def __init__(
        self,
        *,
        users: UserDirectory,
        rate_limiter: RateLimiter,
        lockout: LockoutGuard,
        issuer: TokenIssuer,
        sessions: SessionStore,
        audit: AuditSink,
        clock: Clock = utc_now,
    ) -> None:
        self._users = users
        self._rate = rate_limiter
        self._lockout = lockout
        self._issuer = issuer
        self._sessions = sessions
        self._audit = SafeAudit(audit)
        self._clock = clock

    async def login(
        self, identity: str, secret: str, context: RequestContext
    ) -> LoginResult:
        ip = context.ip_address

        if not await self._rate.allowed(identity):
            remaining = await self._rate.remaining_attempts(identity)
            await self._audit(
                AuditEvent.LOGIN_RATE_LIMITED,
                identity=identity,
                ip_address=ip,
                details="Rate limit exceeded",
            )
            raise RateLimitedError(remaining)

        user = await self._users.find_by_identity(identity)
        if user is None:
            await self._audit(
                AuditEvent.LOGIN_FAILED,
                identity=identity,
                ip_address=ip,
                details="User not found",
            )
            await self._rate.record(identity, success=False, ip_address=ip)
            raise InvalidCredentialsError()

        locked_until = await self._lockout.locked_until(user.id)
        if locked_until is not None:
            await self._audit(
                AuditEvent.LOGIN_FAILED,
                user_id=user.id,
                identity=identity,
                ip_address=ip,
                details="Account locked",
            )
            await self._rate.record(identity, success=False, ip_address=ip)
            raise AccountLockedError(locked_until)

        if not await self._users.verify_password(user, secret):
            state = await self._lockout.record_failure(user.id)
            await self._audit(
                AuditEvent.LOGIN_FAILED,
                user_id=user.id,
                identity=identity,
                ip_address=ip,
                details="Invalid password",
            )
            if state.locked_at(self._clock()):
                await self._audit(
                    AuditEvent.ACCOUNT_LOCKED,
                    user_id=user.id,
                    identity=identity,
                    ip_address=ip,
                    details="Account locked due to failed login attempts",
                )
            await self._rate.record(identity, success=False, ip_address=ip)
            raise InvalidCredentialsError()

        await self._lockout.record_success(user.id)
        await self._rate.record(identity, success=True, ip_address=ip)

        if user.mfa_enabled:
            await self._audit(
                AuditEvent.LOGIN_MFA_REQUIRED,
                user_id=user.id,
                identity=identity,
                ip_address=ip,
            )
            return ChallengeRequired(user_id=user.id)

        access, refresh = await issue_token_pair(self._issuer, user)
        session = await self._sessions.create(
            user.id, refresh.jti, context.device_info, ip
        )
        await self._audit(
            AuditEvent.LOGIN_SUCCESS,
            user_id=user.id,
            identity=identity,
            ip_address=ip,
        )
        logger.info("login_succeeded", user_id=user.id, session_id=session.session_id)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_token_expires_at=access.expires_at,
            refresh_token_expires_at=refresh.expires_at,
            session_id=session.session_id,
            user_id=user.id,
        )
