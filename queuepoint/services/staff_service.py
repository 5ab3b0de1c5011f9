from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from queuepoint.errors import ConflictState, InvalidInput, NotFound
from queuepoint.models import AuditLog, Principal, PrincipalRole, WebSession
from queuepoint.security.passwords import hash_password
from queuepoint.services.auth_guard_service import normalize_email
from queuepoint.services.gateway import atomic

MIN_PASSWORD_LENGTH = 8
EDITABLE_FIELDS = ('email', 'role', 'password', 'active')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def list_principals(db: Session) -> list[Principal]:
    return list(db.execute(select(Principal).order_by(Principal.role.asc(), Principal.email.asc())).scalars().all())


def get_principal(db: Session, principal_id: int) -> Principal:
    principal = db.get(Principal, principal_id)
    if principal is None:
        raise NotFound(f'Account {principal_id} not found')
    return principal


def parse_role(value: str | PrincipalRole) -> PrincipalRole:
    if isinstance(value, PrincipalRole):
        return value
    try:
        return PrincipalRole(str(value).strip().upper())
    except ValueError as exc:
        raise InvalidInput(f'Unknown role: {value}') from exc


def _clean_email(value: str | None) -> str:
    email = normalize_email(value)
    if '@' not in email:
        raise InvalidInput('A valid email is required')
    return email


def _password_hash(value: str | None) -> str:
    password = (value or '').strip()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return hash_password(password)


def _ensure_email_free(db: Session, email: str, *, principal_id: int | None = None) -> None:
    stmt = select(Principal.id).where(Principal.email == email)
    if principal_id is not None:
        stmt = stmt.where(Principal.id != principal_id)
    if db.execute(stmt).first():
        raise ConflictState(f'{email} already has an account')


def _active_admins(db: Session) -> int:
    return db.execute(
        select(func.count(Principal.id)).where(Principal.role == PrincipalRole.ADMIN, Principal.active.is_(True))
    ).scalar_one()


def _ensure_admin_remains(db: Session, target: Principal) -> None:
    if target.role == PrincipalRole.ADMIN and target.active and _active_admins(db) <= 1:
        raise ConflictState('At least one active admin account must remain')


def _revoke_sessions(db: Session, principal_id: int) -> None:
    now = _now()
    for web_session in db.execute(
        select(WebSession).where(WebSession.principal_id == principal_id, WebSession.revoked_at.is_(None))
    ).scalars():
        web_session.revoked_at = now


def create_principal(db: Session, *, email: str, password: str, role: str | PrincipalRole) -> Principal:
    email = _clean_email(email)
    role = parse_role(role)
    password_hash = _password_hash(password)
    with atomic(db, operation='create_principal'):
        _ensure_email_free(db, email)
        principal = Principal(email=email, password_hash=password_hash, role=role, active=True)
        db.add(principal)
        db.flush()
    return principal


def update_principal(db: Session, *, actor_id: int, principal_id: int, changes: dict) -> Principal:
    """Edit an account. Admins cannot lock themselves out, and the last active admin stays an admin."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f'Unknown account fields: {", ".join(sorted(unknown))}')
    with atomic(db, operation='update_principal'):
        principal = get_principal(db, principal_id)
        if 'email' in changes:
            email = _clean_email(changes['email'])
            _ensure_email_free(db, email, principal_id=principal.id)
            principal.email = email
        if 'password' in changes:
            principal.password_hash = _password_hash(changes['password'])
            if principal.id != actor_id:
                _revoke_sessions(db, principal.id)

        role = parse_role(changes['role']) if 'role' in changes else principal.role
        active = bool(changes['active']) if 'active' in changes else principal.active
        losing_admin = principal.role == PrincipalRole.ADMIN and (role != PrincipalRole.ADMIN or not active)
        if losing_admin:
            if principal.id == actor_id:
                raise ConflictState('You cannot remove your own admin access')
            _ensure_admin_remains(db, principal)
        principal.role = role
        if principal.active and not active:
            _revoke_sessions(db, principal.id)
        principal.active = active
    return principal


def delete_principal(db: Session, *, actor_id: int, principal_id: int) -> str:
    """Remove an account with no audit history; accounts with history can only be deactivated."""
    with atomic(db, operation='delete_principal'):
        principal = get_principal(db, principal_id)
        if principal.id == actor_id:
            raise ConflictState('You cannot delete your own account')
        _ensure_admin_remains(db, principal)
        has_history = db.execute(
            select(AuditLog.id).where(AuditLog.actor_principal_id == principal.id).limit(1)
        ).first()
        if has_history:
            raise ConflictState(f'{principal.email} has audit history; deactivate the account instead')
        email = principal.email
        for web_session in db.execute(select(WebSession).where(WebSession.principal_id == principal.id)).scalars():
            db.delete(web_session)
        db.flush()
        db.delete(principal)
    return email
