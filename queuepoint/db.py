from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from queuepoint.config import settings


def _connect_args(url: str) -> dict:
    if not url.startswith('postgresql'):
        return {}
    timeout_ms = settings.gateway_timeout_seconds * 1000
    return {
        'connect_timeout': settings.gateway_timeout_seconds,
        'options': f'-c statement_timeout={timeout_ms}',
    }


engine = create_engine(
    settings.database_url_normalized,
    pool_pre_ping=True,
    pool_timeout=settings.gateway_timeout_seconds,
    connect_args=_connect_args(settings.database_url_normalized),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
    session_factory = request.app.state.session_factory
    with session_factory() as db:
        yield db
