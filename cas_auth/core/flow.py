import logging
import re
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request, status
from fastapi.responses import RedirectResponse

from ..config import CASOptions
from ..models import SessionInfo
from .cas_client import CASClient, Failure
from .errors import AuthenticationFailure
from .logout import extract_ticket
from .tickets import TicketRegistry

logger = logging.getLogger(__name__)

RETURN_TO_KEY = "cas_return_to"
TICKET_KEY = "cas_ticket"
LOGIN_ROUTE = "cas_login"

_DOUBLE_SLASH = re.compile(r"(?<!:)//")


class CASFlow:
    """
    Per-request CAS state machine.

    NoSession -> (redirect to CAS) -> PendingTicket -> (ticket validated)
    -> Authenticated. Logout goes back to NoSession. Nothing is kept on the
    instance between requests; all state lives in request.session and, for
    single logout, in the ticket registry.
    """

    def __init__(
        self,
        options: CASOptions,
        client: Optional[CASClient] = None,
        registry: Optional[TicketRegistry] = None,
    ):
        self.options = options
        self.client = client or CASClient(options.cas_server, options.cas_version)
        self.registry = registry

    def _session_fields(self):
        fields = [self.options.session_name, TICKET_KEY]
        if self.options.session_info:
            fields.append(self.options.session_info)
        return fields

    def _clear_cas_fields(self, request: Request):
        for key in self._session_fields():
            request.session.pop(key, None)

    async def check(self, request: Request) -> bool:
        """
        True when the session already belongs to a CAS user.
        """
        session = request.session
        if not session.get(self.options.session_name):
            return False

        ticket = session.get(TICKET_KEY)
        if ticket and self.registry is not None and not await self.registry.is_active(ticket):
            logger.info(f"ticket {ticket} was logged out by the CAS server, dropping session of {session[self.options.session_name]}")
            self._clear_cas_fields(request)
            return False

        logger.debug(f"session available (userId: {session[self.options.session_name]}) => no CAS cycle")
        return True

    def session_info(self, request: Request) -> SessionInfo:
        session = request.session
        user = session.get(self.options.session_name)
        if not user:
            return SessionInfo(user_id=None)
        info = session.get(self.options.session_info) if self.options.session_info else None
        return SessionInfo(user_id=user, user_info=info)

    def absolute_url(self, request: Request) -> str:
        """
        URL of the page requested right now, so we can come back to it after login.
        """
        if self.options.backend_base_url:
            path = request.url.path
            if request.url.query:
                path += "?" + request.url.query
            return _DOUBLE_SLASH.sub("/", self.options.backend_base_url + path)
        return str(request.url)

    def service_url(self, request: Request) -> str:
        if self.options.service_url:
            return self.options.service_url
        login_url = request.url_for(LOGIN_ROUTE)
        if self.options.backend_base_url:
            return _DOUBLE_SLASH.sub("/", self.options.backend_base_url + login_url.path)
        return str(login_url)

    def return_to_param(self, request: Request) -> Optional[str]:
        """
        The returnTo query parameter, if it stays on this application.

        Relative paths are accepted, absolute URLs only when they point to
        the host of backend_base_url.
        """
        return_to = request.query_params.get("returnTo")
        if not return_to:
            return None
        if return_to.startswith("/") and not return_to.startswith(("//", "/\\")):
            return return_to
        if self.options.backend_base_url:
            target = urlparse(return_to)
            backend = urlparse(self.options.backend_base_url)
            if target.scheme in ("http", "https") and target.netloc == backend.netloc:
                return return_to
        logger.warning(f"ignoring returnTo pointing away from the application: {return_to}")
        return None

    def _authenticate(self, request: Request, principal: str, attributes=None, ticket: Optional[str] = None):
        # Build everything first so the session is written in one go
        fields = {self.options.session_name: principal}
        if self.options.session_info and attributes is not None:
            fields[self.options.session_info] = attributes
        if ticket is not None:
            fields[TICKET_KEY] = ticket
        request.session.update(fields)

    def _login_dev_mode(self, request: Request):
        logger.info(f"dev mode => using {self.options.dev_mode_user} without contacting CAS")
        self._authenticate(request, self.options.dev_mode_user, self.options.dev_mode_info)

    def login(self, request: Request) -> RedirectResponse:
        """
        Redirect the client to the CAS login page.

        The explicit returnTo query parameter, or else the requested URL, is
        parked in the session until the ticket comes back.
        """
        return_to = self.return_to_param(request) or self.absolute_url(request)

        if self.options.dev_mode:
            self._login_dev_mode(request)
            return RedirectResponse(return_to, status_code=status.HTTP_302_FOUND)

        request.session[RETURN_TO_KEY] = return_to
        login_url = self.client.get_login_url(self.service_url(request), renew=self.options.renew)
        logger.debug(f"starting CAS cycle, redirecting to {login_url}")
        return RedirectResponse(login_url, status_code=status.HTTP_302_FOUND)

    async def handle_ticket(self, request: Request, ticket: str) -> RedirectResponse:
        """
        Validate a ticket handed back by the CAS server and open the session.

        Raises AuthenticationFailure when the server rejects the ticket;
        TransportError and MalformedDocument come straight from the client.
        """
        result = await self.client.validate_ticket(ticket, self.service_url(request))
        if isinstance(result, Failure):
            logger.warning(f"CAS Auth Failure: {result.code} {result.description}")
            raise AuthenticationFailure(result.code, result.description)

        if self.registry is not None:
            await self.registry.register(ticket)
        self._authenticate(request, result.principal, result.attributes, ticket)
        logger.info(f"CAS user {result.principal} logged in")

        return_to = request.session.pop(RETURN_TO_KEY, None) or "/"
        return RedirectResponse(return_to, status_code=status.HTTP_302_FOUND)

    async def bounce(self, request: Request) -> Optional[RedirectResponse]:
        """
        Run one step of the CAS cycle for a protected request.

        Returns None when the request may go on to the protected resource,
        otherwise the redirect to send back.
        """
        if await self.check(request):
            return None

        if self.options.dev_mode:
            self._login_dev_mode(request)
            return None

        ticket = request.query_params.get("ticket")
        if ticket is not None:
            return await self.handle_ticket(request, ticket)

        return self.login(request)

    def after_login(self, request: Request) -> RedirectResponse:
        return_to = self.return_to_param(request) or request.session.pop(RETURN_TO_KEY, None) or "/"
        return RedirectResponse(return_to, status_code=status.HTTP_302_FOUND)

    async def destroy_session(self, request: Request):
        ticket = request.session.get(TICKET_KEY)
        try:
            if self.options.destroy_session:
                request.session.clear()
            else:
                self._clear_cas_fields(request)
            if ticket and self.registry is not None:
                await self.registry.revoke(ticket)
        except Exception:
            # logout has to succeed for the browser no matter what
            logger.exception("could not clean up session on logout")

    async def logout(self, request: Request) -> RedirectResponse:
        user = request.session.get(self.options.session_name)
        await self.destroy_session(request)
        logger.info(f"CAS user {user} logged out")
        return RedirectResponse(self.client.get_logout_url(), status_code=status.HTTP_302_FOUND)

    async def single_logout(self, document) -> str:
        """
        Handle a logout notification pushed by the CAS server.

        Returns the ticket named by the document. The session opened with that
        ticket is dropped on its next request.
        """
        ticket = extract_ticket(document)
        if self.registry is None:
            logger.warning(f"single logout for {ticket} ignored, no ticket registry configured")
            return ticket

        if await self.registry.revoke(ticket):
            logger.info(f"single logout for ticket {ticket}")
        else:
            logger.info(f"single logout for unknown ticket {ticket}")
        return ticket
