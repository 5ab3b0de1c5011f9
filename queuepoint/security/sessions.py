from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from queuepoint.auth import Principal, Role
from queuepoint.config import settings
from queuepoint.errors import Unauthenticated
from queuepoint.models import Principal as PrincipalModel
from queuepoint.models import WebSession


# Customer-facing kiosk routes work without a login.
PUBLIC_PATHS = {'/', '/login', '/robots.txt', '/menu', '/orders', '/queue/board', '/feedback'}
PUBLIC_PREFIXES = ('/gate/', '/orders/', '/menu/')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def create_web_session(db: Session, principal_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    now = _now()
    web_session = WebSession(
        session_token=token,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
        created_at=now,
        last_seen_at=now,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db: Session, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_principal_from_token(db: Session, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, PrincipalModel)
        .join(PrincipalModel, PrincipalModel.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, principal = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Principal(
        id=principal.id,
        email=principal.email,
        role=Role(principal.role.value),
        active=principal.active,
    )


def _unauthenticated_response(request: Request):
    if 'text/html' in request.headers.get('accept', ''):
        return RedirectResponse('/login', status_code=303)
    return JSONResponse(
        status_code=401,
        content={'success': False, 'error': Unauthenticated.code, 'detail': 'Login required'},
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        principal = None
        if token:
            with request.app.state.session_factory() as db:
                principal = load_principal_from_token(db, token)
                db.commit()
        request.state.principal = principal

        if principal is None and not is_public_path(request.url.path):
            return _unauthenticated_response(request)

        return await call_next(request)
