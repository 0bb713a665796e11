from fastapi import APIRouter, Depends, Request, Response, status

from ..auth import get_cas, get_session_info
from ..core.flow import CASFlow, LOGIN_ROUTE
from ..models import SessionInfo

router = APIRouter()


@router.get("/login", name=LOGIN_ROUTE)
async def sso_login(request: Request, cas: CASFlow = Depends(get_cas)):
    """
    Handle CAS Login:
    - already logged in: go back to returnTo (or wherever the login started)
    - ticket present: this is the CAS server sending the client back, validate it
    - otherwise: redirect to the CAS server
    """
    if await cas.check(request):
        return cas.after_login(request)

    ticket = request.query_params.get("ticket")
    if ticket is not None:
        return await cas.handle_ticket(request, ticket)

    return cas.login(request)


@router.post("/login")
async def sso_single_logout(request: Request, cas: CASFlow = Depends(get_cas)):
    """
    Single logout: the CAS server posts a logoutRequest document to the service URL.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        document = form.get("logoutRequest", "")
    else:
        document = await request.body()

    await cas.single_logout(document)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/logout")
async def sso_logout(request: Request, cas: CASFlow = Depends(get_cas)):
    """
    Logout locally and from CAS.
    """
    return await cas.logout(request)


@router.get("/session", response_model=SessionInfo)
async def sso_session(info: SessionInfo = Depends(get_session_info)):
    return info


@router.get("/ensure-session")
async def ensure_session(request: Request, cas: CASFlow = Depends(get_cas)):
    """
    Make sure there is a user session before the frontend starts asking for it.
    """
    redirect = await cas.bounce(request)
    if redirect is not None:
        return redirect
    return Response(status_code=status.HTTP_204_NO_CONTENT)
