from fastapi import FastAPI, Request
from starlette.responses import Response


BASE_HEADERS = {
    "X-Robots-Tag": "noindex, nofollow, noarchive",
    # Kiosk screens must never be framed by another origin.
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "same-origin",
}
PRIVATE_PREFIXES = ("/admin", "/kitchen", "/login")


def is_private_path(path: str) -> bool:
    return path == "/queue" or path.startswith(PRIVATE_PREFIXES)


def install_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in BASE_HEADERS.items():
            response.headers[name] = value
        if is_private_path(request.url.path) and "cache-control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        return response
