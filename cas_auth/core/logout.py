import logging
from typing import Union

from .errors import NoValidLogoutDocument
from .xml_decoder import decode

logger = logging.getLogger(__name__)


def extract_ticket(document: Union[str, bytes]) -> str:
    """
    Return the service ticket named by a CAS single-logout document.

    The CAS server pushes something like::

        <samlp:LogoutRequest ...>
            <saml:NameID>@NOT_USED@</saml:NameID>
            <samlp:SessionIndex>ST-123</samlp:SessionIndex>
        </samlp:LogoutRequest>

    Raises MalformedDocument if the document is not XML and
    NoValidLogoutDocument if it is XML but not a logout request.
    """
    data = decode(document)
    logger.debug(f"logout document: {data}")

    logout_request = data.get("logoutrequest")
    session_index = logout_request.get("sessionindex") if isinstance(logout_request, dict) else None
    if isinstance(session_index, dict):
        session_index = session_index.get("#text")

    if not isinstance(session_index, str) or not session_index:
        logger.info("Bad XML document, could not recognize logout document")
        raise NoValidLogoutDocument()
    return session_index
