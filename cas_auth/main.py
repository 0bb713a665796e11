import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .auth import require_cas_user
from .config import CASOptions, options_from_env
from .core.errors import AuthenticationFailure, CASError, MalformedDocument, NoValidLogoutDocument, TransportError
from .core.flow import CASFlow
from .core.tickets import SESSION_MAX_AGE, SQLTicketRegistry, TicketRegistry
from .routers import sso

logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: CASError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": exc.description})


async def authentication_failure_handler(request: Request, exc: AuthenticationFailure):
    return _error_response(status.HTTP_401_UNAUTHORIZED, exc)


async def cas_unavailable_handler(request: Request, exc: CASError):
    # the CAS server did not give us anything usable
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc)


async def bad_logout_document_handler(request: Request, exc: CASError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


async def malformed_document_handler(request: Request, exc: MalformedDocument):
    # a garbled push to the single logout endpoint is the caller's fault
    if request.method == "POST":
        return await bad_logout_document_handler(request, exc)
    return await cas_unavailable_handler(request, exc)


def install_cas(app: FastAPI, cas: CASFlow):
    """
    Wire a CASFlow into an application: state, routes and error handlers.
    """
    app.state.cas = cas
    app.include_router(sso.router, prefix=cas.options.cas_router_prefix, tags=["cas"])
    app.add_exception_handler(AuthenticationFailure, authentication_failure_handler)
    app.add_exception_handler(TransportError, cas_unavailable_handler)
    app.add_exception_handler(MalformedDocument, malformed_document_handler)
    app.add_exception_handler(NoValidLogoutDocument, bad_logout_document_handler)


def create_app(
    options: CASOptions,
    registry: Optional[TicketRegistry] = None,
    secret_key: str = "change-me",
    max_age: int = SESSION_MAX_AGE,
    lifespan=None,
) -> FastAPI:
    app = FastAPI(title="CAS Authentication", version="1.0", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=secret_key, max_age=max_age)
    install_cas(app, CASFlow(options, registry=registry))

    @app.get("/")
    async def root(user: str = Depends(require_cas_user)):
        return {"message": f"Welcome {user}"}

    return app


def create_app_from_env() -> FastAPI:
    from .database import create_db_and_tables, engine

    # Lifespan event to create tables on startup
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not os.path.exists("data"):
            os.makedirs("data")
        create_db_and_tables()
        yield

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    options = options_from_env(os.environ)
    max_age = int(os.environ.get("SESSION_MAX_AGE", SESSION_MAX_AGE))
    return create_app(
        options,
        registry=SQLTicketRegistry(engine, max_age=max_age),
        secret_key=os.environ.get("SESSION_SECRET", "change-me"),
        max_age=max_age,
        lifespan=lifespan,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("cas_auth.main:create_app_from_env", factory=True, host="0.0.0.0", port=8000, reload=True)
