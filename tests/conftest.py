import base64
import json

import httpx
import pytest
import requests
from fastapi.testclient import TestClient

from cds_backend import config
from cds_backend.main import app
from cds_backend.sessions import SESSIONS, create_session

_RealAsyncClient = httpx.AsyncClient


def make_id_token(claims):
    def part(obj):
        raw = json.dumps(obj).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{part({'alg': 'RS256', 'typ': 'JWT'})}.{part(claims)}.signature"


def bundle(*resources):
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "total": len(resources),
        "entry": [{"resource": r} for r in resources],
    }


class FakeResponse:
    """Stand-in for requests.Response"""

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


@pytest.fixture(autouse=True)
def clear_sessions():
    SESSIONS.clear()
    yield
    SESSIONS.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session(client):
    """An authenticated session whose cookie is set on the test client"""
    session_id, record = create_session()
    record["access_token"] = "access-123"
    record["refresh_token"] = "refresh-123"
    record["granted_scope"] = "openid fhirUser user/Patient.read"
    client.cookies.set(config.SESSION_COOKIE_NAME, session_id)
    return record


@pytest.fixture
def fhir_server(monkeypatch):
    """
    Route every httpx.AsyncClient request to a handler
    Tests register handlers with fhir_server.handler = fn(request) -> httpx.Response
    and inspect fhir_server.requests afterwards.
    """

    class Server:
        def __init__(self):
            self.requests = []
            self.handler = lambda request: httpx.Response(200, json=bundle())

        def _dispatch(self, request):
            self.requests.append(request)
            return self.handler(request)

    server = Server()

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(server._dispatch)
        return _RealAsyncClient(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return server
