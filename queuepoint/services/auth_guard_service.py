from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from queuepoint.config import settings
from queuepoint.errors import AuthenticationFailed, InvalidInput, LoginLocked
from queuepoint.models import LoginAttempt, LoginAttemptType, Principal, PrincipalRole
from queuepoint.security.passwords import verify_and_refresh
from queuepoint.services.gateway import atomic

# Admin credentials are tried before staff credentials.
LOGIN_CHECKS = (
    (LoginAttemptType.ADMIN, PrincipalRole.ADMIN, '/admin'),
    (LoginAttemptType.STAFF, PrincipalRole.STAFF, '/queue'),
)


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    failed_count: int
    last_attempt: datetime | None


@dataclass(frozen=True)
class AuthResult:
    principal: Principal
    attempt_type: LoginAttemptType
    redirect_to: str


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def normalize_email(email: str | None) -> str:
    return (email or '').strip().lower()


def record_attempt(
    db: Session,
    *,
    email: str,
    success: bool,
    attempt_type: LoginAttemptType,
    error_message: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> LoginAttempt:
    attempt = LoginAttempt(
        email=normalize_email(email),
        success=success,
        attempt_type=attempt_type,
        error_message=error_message,
        ip=ip,
        user_agent=user_agent,
        attempted_at=now or _now(),
    )
    db.add(attempt)
    db.flush()
    return attempt


def is_locked(
    db: Session,
    *,
    email: str,
    attempt_type: LoginAttemptType,
    now: datetime | None = None,
) -> LockoutStatus:
    cutoff = (now or _now()) - timedelta(minutes=settings.login_lockout_window_minutes)
    failed_count, last_attempt = db.execute(
        select(func.count(LoginAttempt.id), func.max(LoginAttempt.attempted_at)).where(
            LoginAttempt.email == normalize_email(email),
            LoginAttempt.attempt_type == attempt_type,
            LoginAttempt.success.is_(False),
            LoginAttempt.attempted_at > cutoff,
        )
    ).one()
    return LockoutStatus(
        locked=failed_count >= settings.login_lockout_threshold,
        failed_count=failed_count,
        last_attempt=last_attempt,
    )


def recent_activity(
    db: Session,
    *,
    email: str | None = None,
    attempt_type: LoginAttemptType | None = None,
    limit: int = 10,
) -> list[LoginAttempt]:
    stmt = select(LoginAttempt).order_by(LoginAttempt.attempted_at.desc(), LoginAttempt.id.desc()).limit(limit)
    if email:
        stmt = stmt.where(LoginAttempt.email == normalize_email(email))
    if attempt_type is not None:
        stmt = stmt.where(LoginAttempt.attempt_type == attempt_type)
    return list(db.execute(stmt).scalars().all())


def _check_credentials(db: Session, *, email: str, password: str, role: PrincipalRole) -> tuple[Principal | None, str]:
    principal = db.execute(
        select(Principal).where(Principal.email == email, Principal.role == role)
    ).scalar_one_or_none()
    if not principal:
        return None, 'UNKNOWN_ACCOUNT'
    if not principal.active:
        return None, 'INACTIVE_ACCOUNT'
    verified, refreshed_hash = verify_and_refresh(password, principal.password_hash)
    if not verified:
        return None, 'BAD_PASSWORD'
    if refreshed_hash:
        principal.password_hash = refreshed_hash
    return principal, ''


def authenticate(
    db: Session,
    *,
    email: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> AuthResult:
    """Try admin then staff credentials, logging every check that runs.

    A check whose (email, type) pair is locked out is skipped without logging.
    Attempts are committed before any failure is raised.
    """
    email = normalize_email(email)
    if not email or not password:
        raise InvalidInput('Email and password are required')
    now = now or _now()

    result: AuthResult | None = None
    locked_types: list[LoginAttemptType] = []
    with atomic(db, operation='authenticate'):
        for attempt_type, role, redirect_to in LOGIN_CHECKS:
            if is_locked(db, email=email, attempt_type=attempt_type, now=now).locked:
                locked_types.append(attempt_type)
                continue
            principal, failure = _check_credentials(db, email=email, password=password, role=role)
            record_attempt(
                db,
                email=email,
                success=principal is not None,
                attempt_type=attempt_type,
                error_message=failure or None,
                ip=ip,
                user_agent=user_agent,
                now=now,
            )
            if principal is not None:
                result = AuthResult(principal=principal, attempt_type=attempt_type, redirect_to=redirect_to)
                break

    if result is not None:
        return result
    if len(locked_types) == len(LOGIN_CHECKS):
        raise LoginLocked(
            f'Too many failed attempts. Try again in {settings.login_lockout_window_minutes} minutes.'
        )
    raise AuthenticationFailed('Invalid email or password')
