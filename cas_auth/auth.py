from fastapi import Depends, HTTPException, status, Request

from .core.flow import CASFlow
from .models import SessionInfo


def get_cas(request: Request) -> CASFlow:
    return request.app.state.cas


async def require_cas_user(request: Request, cas: CASFlow = Depends(get_cas)) -> str:
    """
    Protect a route with CAS.

    Without a session the client is sent through the CAS login; the
    dependency only returns once the session holds a user.
    """
    redirect = await cas.bounce(request)
    if redirect is not None:
        raise HTTPException(
            status_code=redirect.status_code,
            detail="Redirecting to CAS",
            headers={"Location": redirect.headers["location"]},
        )
    return request.session[cas.options.session_name]


async def block(request: Request, cas: CASFlow = Depends(get_cas)) -> str:
    """
    For API routes: no redirect, just 401 when nobody is logged in.
    """
    if not await cas.check(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return request.session[cas.options.session_name]


async def get_session_info(request: Request, cas: CASFlow = Depends(get_cas)) -> SessionInfo:
    await cas.check(request)
    return cas.session_info(request)
