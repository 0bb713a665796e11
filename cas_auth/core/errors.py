class CASError(Exception):
    """
    Base class for everything that can go wrong while talking CAS.
    """
    code = "CAS_ERROR"

    def __init__(self, description: str = ""):
        super().__init__(description)
        self.description = description


class InvalidConfiguration(CASError):
    code = "INVALID_CONFIGURATION"


class TransportError(CASError):
    """
    The CAS server could not be reached (timeout, refused connection, DNS).
    """
    code = "TRANSPORT_ERROR"


class MalformedDocument(CASError):
    """
    A document received from the CAS server was not well-formed XML.
    """
    code = "MALFORMED_DOCUMENT"


class AuthenticationFailure(CASError):
    """
    The CAS server explicitly rejected the ticket.
    """
    code = "AUTHENTICATION_FAILED"

    def __init__(self, code: str, description: str):
        super().__init__(description)
        self.code = code


class NoValidLogoutDocument(CASError):
    code = "NO_VALID_CAS_LOGOUT"

    def __init__(self, description: str = "service ticket could not be found in the XML logout document"):
        super().__init__(description)
