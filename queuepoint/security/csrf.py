from __future__ import annotations

import secrets

from fastapi import Request
from starlette.responses import Response

from queuepoint.config import settings
from queuepoint.errors import PermissionDenied


CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'x-csrf-token'
CSRF_FORM_FIELD = 'csrf_token'
SAFE_METHODS = {'GET', 'HEAD', 'OPTIONS'}
FORM_CONTENT_TYPES = ('application/x-www-form-urlencoded', 'multipart/form-data')


def _issue_cookie(response: Response, token: str) -> None:
    # Readable by kiosk scripts, which echo it back in the header.
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
    )


def install_csrf_cookie_middleware(app) -> None:
    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        existing = request.cookies.get(CSRF_COOKIE_NAME)
        request.state.csrf_token = existing or secrets.token_urlsafe(24)

        response = await call_next(request)
        if not existing:
            _issue_cookie(response, request.state.csrf_token)
        return response


async def _submitted_token(request: Request) -> str | None:
    header_token = request.headers.get(CSRF_HEADER_NAME)
    if header_token:
        return header_token
    if request.headers.get('content-type', '').startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        value = form.get(CSRF_FORM_FIELD)
        return str(value) if value else None
    return None


async def verify_csrf(request: Request) -> None:
    """Double-submit check: the token in the header (or form field) must match the cookie."""
    if request.method in SAFE_METHODS:
        return

    submitted = await _submitted_token(request)
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    if not submitted or not cookie_token or not secrets.compare_digest(submitted, cookie_token):
        raise PermissionDenied('Invalid CSRF token')
