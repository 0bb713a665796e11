from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from cas_auth.config import initialize
from cas_auth.core.flow import CASFlow
from cas_auth.core.tickets import InMemoryTicketRegistry
from cas_auth.main import create_app

from conftest import CAS_SERVER, FAILURE_XML, SUCCESS_XML


def test_block_without_session(client):
    response = client.get("/api/me", follow_redirects=False)
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_block_with_session(client):
    with patch("httpx.AsyncClient.get") as mock_get:
        mock_get.return_value = MagicMock(status_code=200, content=SUCCESS_XML)
        client.get("/cas/login?ticket=ST-1", follow_redirects=False)

    response = client.get("/api/me")
    assert response.status_code == 200
    assert response.json() == {"user": "alice"}


def test_rejected_ticket_is_not_registered(client, registry):
    with patch("httpx.AsyncClient.get") as mock_get:
        mock_get.return_value = MagicMock(status_code=200, content=FAILURE_XML)
        client.get("/cas/login?ticket=ST-123", follow_redirects=False)

    assert not registry._issued


class BrokenRegistry(InMemoryTicketRegistry):
    async def revoke(self, ticket):
        raise RuntimeError("session store is down")


def test_logout_survives_broken_registry():
    app = create_app(initialize({"cas_server": CAS_SERVER}), registry=BrokenRegistry(), secret_key="test-secret")

    with TestClient(app) as client:
        with patch("httpx.AsyncClient.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=200, content=SUCCESS_XML)
            client.get("/cas/login?ticket=ST-1", follow_redirects=False)

        response = client.get("/cas/logout", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == f"{CAS_SERVER}/logout"
        assert client.get("/cas/session").json()["user_id"] is None


@pytest.mark.asyncio
async def test_single_logout_without_registry():
    flow = CASFlow(initialize({"cas_server": CAS_SERVER}))

    ticket = await flow.single_logout("<logoutRequest><sessionIndex>ST-1</sessionIndex></logoutRequest>")
    assert ticket == "ST-1"
