import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.orm import sessionmaker

from queuepoint.db import SessionLocal
from queuepoint.errors import DomainError
from queuepoint.routers import admin, auth, kiosk, kitchen
from queuepoint.security.csrf import install_csrf_cookie_middleware
from queuepoint.security.headers import install_security_headers
from queuepoint.security.sessions import install_auth_session_middleware
from queuepoint.services.change_feed import ChangeFeed
from queuepoint.services.ip_cache import IpRegistrationCache

logger = logging.getLogger(__name__)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        if exc.status_code >= 500:
            logger.error('%s %s failed: %s', request.method, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={'success': False, 'error': exc.code, 'detail': exc.detail},
        )


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    app = FastAPI(title='QueuePoint')

    app.state.session_factory = session_factory or SessionLocal
    app.state.change_feed = ChangeFeed()
    app.state.ip_cache = IpRegistrationCache()

    install_error_handlers(app)
    install_security_headers(app)
    install_csrf_cookie_middleware(app)
    install_auth_session_middleware(app)

    app.include_router(auth.router)
    app.include_router(kiosk.router)
    app.include_router(kitchen.router)
    app.include_router(admin.router)

    @app.get('/')
    def root(request: Request):
        principal = getattr(request.state, 'principal', None)
        if principal is None:
            return RedirectResponse('/menu', status_code=303)
        return RedirectResponse(principal.home, status_code=303)

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


app = create_app()
