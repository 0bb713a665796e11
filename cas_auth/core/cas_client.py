import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

import httpx

from .errors import TransportError
from .xml_decoder import decode

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("1.0", "2.0", "3.0")

Attributes = Dict[str, Union[str, List[str], Any]]


@dataclass(frozen=True)
class Success:
    principal: str
    attributes: Optional[Attributes] = None


@dataclass(frozen=True)
class Failure:
    code: str
    description: str


ValidationResult = Union[Success, Failure]


@dataclass(frozen=True)
class ValidationRequest:
    ticket: str
    service_url: str
    cas_version: str
    server_url: str = field(repr=False)

    @property
    def path(self) -> str:
        if self.cas_version == "3.0":
            return "/p3/serviceValidate"
        return "/serviceValidate"

    @property
    def url(self) -> str:
        return f"{self.server_url}{self.path}"

    @property
    def params(self) -> Dict[str, str]:
        return {"service": self.service_url, "ticket": self.ticket}


def _text_of(element) -> str:
    if element is None:
        return ""
    if isinstance(element, dict):
        return element.get("#text") or ""
    return str(element)


def interpret_validation_response(body: Union[str, bytes]) -> ValidationResult:
    """
    Turn the body of a serviceValidate response into a ValidationResult.

    An authenticationFailure element wins over an authenticationSuccess
    element; a response carrying neither is reported as a generic failure.
    Raises MalformedDocument if the body is not XML.
    """
    data = decode(body)
    service_response = data.get("serviceresponse")
    if not isinstance(service_response, dict):
        service_response = {}

    if "authenticationfailure" in service_response:
        failure = service_response["authenticationfailure"]
        code = failure.get("@code", "") if isinstance(failure, dict) else ""
        description = _text_of(failure)
        logger.debug(f"CAS authentication failed: {code} {description}")
        return Failure(code=code, description=description)

    success = service_response.get("authenticationsuccess")
    if isinstance(success, dict) and success.get("user"):
        attributes = None
        if "attributes" in success:
            attributes = success["attributes"] or {}
        return Success(principal=_text_of(success["user"]), attributes=attributes)

    logger.debug("CAS authentication failed apparently, neither success nor failure in response")
    return Failure(code="INVALID_RESPONSE", description="CAS authentication failed.")


class CASClient:
    def __init__(
        self,
        server_url: str,
        cas_version: str = "2.0",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.server_url = server_url.rstrip('/')
        self.cas_version = cas_version
        self.http_client = http_client
        self.timeout = timeout

    def get_login_url(self, service_url: str, renew: bool = False) -> str:
        """
        Generate the CAS login URL with the service parameter.
        """
        params = {'service': service_url}
        # CAS only understands the literal string "true"
        if renew:
            params['renew'] = 'true'
        return f"{self.server_url}/login?{urlencode(params)}"

    def get_logout_url(self, service_url: str = None) -> str:
        """
        Generate the CAS logout URL.
        """
        url = f"{self.server_url}/logout"
        if service_url:
            params = {'service': service_url}
            url += f"?{urlencode(params)}"
        return url

    def build_validation_request(self, ticket: str, service_url: str) -> ValidationRequest:
        return ValidationRequest(
            ticket=ticket,
            service_url=service_url,
            cas_version=self.cas_version,
            server_url=self.server_url,
        )

    async def _get(self, request: ValidationRequest) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.get(request.url, params=request.params)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(request.url, params=request.params)

    async def validate_ticket(self, ticket: str, service_url: str) -> ValidationResult:
        """
        Validate a Service Ticket (ST) against the CAS server.

        Uses /serviceValidate for CAS 1.0 and 2.0, /p3/serviceValidate for 3.0.
        Raises TransportError when the server cannot be reached and
        MalformedDocument when it answers with something that is not XML.
        Nothing is retried.
        """
        request = self.build_validation_request(ticket, service_url)
        logger.debug(f"requesting: {request.url} {request.params}")

        try:
            response = await self._get(request)
        except httpx.TransportError as e:
            logger.warning(f"CAS Validation Error: {e!r}")
            raise TransportError(f"Could not reach CAS server at {request.url}: {e}") from e

        if response.status_code != 200:
            logger.warning(f"CAS validation answered HTTP {response.status_code}")

        logger.debug(f"ticket data received: {response.content!r}")
        return interpret_validation_response(response.content)
