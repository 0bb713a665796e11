import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from cas_auth.auth import block
from cas_auth.config import initialize
from cas_auth.core.tickets import InMemoryTicketRegistry
from cas_auth.database import create_db_and_tables
from cas_auth.main import create_app

from sqlalchemy.pool import StaticPool

CAS_SERVER = "https://cas.example.com/cas"

SUCCESS_XML = b"""<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>
    <cas:authenticationSuccess>
        <cas:user>alice</cas:user>
        <cas:attributes>
            <cas:email>alice@example.com</cas:email>
            <cas:memberOf>staff</cas:memberOf>
            <cas:memberOf>admins</cas:memberOf>
        </cas:attributes>
    </cas:authenticationSuccess>
</cas:serviceResponse>"""

FAILURE_XML = b"""<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>
    <cas:authenticationFailure code="INVALID_TICKET">
        Ticket ST-123 not recognized
    </cas:authenticationFailure>
</cas:serviceResponse>"""


def logout_xml(ticket):
    return f"""<samlp:LogoutRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
        xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" ID="LR-1" Version="2.0"
        IssueInstant="2024-01-01T12:00:00Z">
        <saml:NameID>@NOT_USED@</saml:NameID>
        <samlp:SessionIndex>{ticket}</samlp:SessionIndex>
    </samlp:LogoutRequest>"""


@pytest.fixture(name="engine")
def engine_fixture():
    # in-memory database shared across connections
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="raw_options")
def raw_options_fixture():
    return {"cas_server": CAS_SERVER, "cas_version": "3.0"}


@pytest.fixture(name="registry")
def registry_fixture():
    return InMemoryTicketRegistry()


@pytest.fixture(name="app")
def app_fixture(raw_options, registry):
    app = create_app(initialize(raw_options), registry=registry, secret_key="test-secret")

    @app.get("/api/me")
    async def me(user: str = Depends(block)):
        return {"user": user}

    return app


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as client:
        yield client
