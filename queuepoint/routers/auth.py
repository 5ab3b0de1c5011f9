from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from queuepoint.config import settings
from queuepoint.db import get_db
from queuepoint.dependencies import get_client_ip
from queuepoint.schemas import LoginIn
from queuepoint.security.csrf import verify_csrf
from queuepoint.security.sessions import create_web_session, revoke_web_session
from queuepoint.services.audit_service import log_audit
from queuepoint.services.auth_guard_service import authenticate

router = APIRouter(tags=['auth'])


@router.get('/login')
def login_page(request: Request):
    principal = getattr(request.state, 'principal', None)
    return {
        'authenticated': principal is not None,
        'role': principal.role.value if principal else None,
        'csrf_token': request.state.csrf_token,
    }


@router.post('/login')
def login_submit(
    payload: LoginIn,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    # Failed attempts are committed inside authenticate before it raises.
    result = authenticate(db, email=payload.email, password=payload.password, ip=ip, user_agent=user_agent)

    token = create_web_session(db, result.principal.id, ip=ip, user_agent=user_agent)
    log_audit(
        db,
        actor_principal_id=result.principal.id,
        action='AUTH_LOGIN',
        ip=ip,
        metadata={'email': result.principal.email, 'attempt_type': result.attempt_type.value},
    )
    db.commit()

    response = JSONResponse(
        {
            'success': True,
            'role': result.principal.role.value,
            'redirect_to': result.redirect_to,
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_principal_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse({'success': True, 'redirect_to': '/login'})
    response.delete_cookie(settings.session_cookie_name)
    return response
