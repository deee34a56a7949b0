# dbedit/main.py

import logging
import re
import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from dbedit.api.endpoints import editors
from dbedit.core.config import settings
from dbedit.core.db import check_connection
from dbedit.core.exceptions import EditorConfigError, EditorQueryError, EditorRedirect

# Set up logging
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
    logger.info(f"Environment: {'Development' if settings.DEBUG else 'Production'}")
    logger.info(f"Session backend: {settings.SESSION_BACKEND}")
    if settings.EDITORS_FILE is None:
        logger.warning("EDITORS_FILE is not set; no editors will be available")
    yield
    logger.info(f"Stopping {settings.PROJECT_NAME}")


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

# Include API routers
app.include_router(editors.router)

SESSION_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


# Session middleware: gives every browser a session id that scopes its editors
@app.middleware("http")
async def session_middleware(request: Request, call_next):
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    is_new = not session_id or not SESSION_ID_PATTERN.match(session_id)
    if is_new:
        session_id = secrets.token_hex(16)

    request.state.session_id = session_id
    response = await call_next(request)

    if is_new:
        response.set_cookie(
            key=settings.SESSION_COOKIE_NAME,
            value=session_id,
            httponly=True,
            path="/",
            samesite="lax",
            secure=settings.COOKIE_SECURE
        )

    return response


@app.exception_handler(EditorRedirect)
async def editor_redirect_handler(request: Request, exc: EditorRedirect):
    """Mutating editor actions and lost editors end in a redirect"""
    return RedirectResponse(url=exc.location, status_code=status.HTTP_303_SEE_OTHER)


def is_development_host(host: str) -> bool:
    return bool(re.search(settings.DEV_HOST_PATTERN, host or ""))


@app.exception_handler(EditorQueryError)
async def editor_query_error_handler(request: Request, exc: EditorQueryError):
    """Show the failing SQL to developers only; everyone else gets an empty error"""
    if settings.DEBUG or is_development_host(request.url.hostname):
        return PlainTextResponse(
            f"{exc.sql}\n{exc.message}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(EditorConfigError)
async def editor_config_error_handler(request: Request, exc: EditorConfigError):
    logger.error(f"Editor configuration error: {str(exc)}")
    if settings.DEBUG:
        return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.get("/")
async def index():
    return RedirectResponse(url="/editors", status_code=status.HTTP_303_SEE_OTHER)


@app.get("/health")
async def health():
    """Report whether the database is reachable"""
    return {"status": "ok", "database": check_connection(), "version": settings.VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dbedit.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL
    )
