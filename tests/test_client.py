"""
Testes do cliente HTTP (requests) com sessão simulada.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from convenio.auth_security import create_access_token
from convenio.client import ApiClient, jwt_is_expired, jwt_payload
from convenio.errors import AuthenticationError, AuthorizationError, UpstreamError


def make_response(status_code: int, body=None) -> requests.Response:
    r = requests.Response()
    r.status_code = status_code
    r.url = "http://api.test/x"
    r._content = json.dumps(body).encode() if body is not None else b""
    return r


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


class TestApiClient:
    def test_base_url_is_injected(self, http):
        http.request.return_value = make_response(200, {"status": "OK"})
        client = ApiClient("http://api.test/", token="abc", timeout=3, session=http)

        assert client.get("/api/health") == {"status": "OK"}

        method, url = http.request.call_args.args
        assert (method, url) == ("GET", "http://api.test/api/health")
        assert http.request.call_args.kwargs["headers"]["Authorization"] == "Bearer abc"
        assert http.request.call_args.kwargs["timeout"] == 3

    def test_upstream_message_is_passed_through(self, http):
        http.request.return_value = make_response(409, {"kind": "conflict", "detail": "Horário já ocupado"})
        client = ApiClient("http://api.test", session=http)

        with pytest.raises(UpstreamError) as exc:
            client.post("/api/consultations", {})

        assert exc.value.message == "Horário já ocupado"
        assert exc.value.detail == {"status_code": 409, "kind": "conflict"}

    def test_401_and_403(self, http):
        client = ApiClient("http://api.test", session=http)

        http.request.return_value = make_response(401, {"detail": "Token inválido"})
        with pytest.raises(AuthenticationError):
            client.get("/api/me")

        http.request.return_value = make_response(403, {"detail": "Acesso negado"})
        with pytest.raises(AuthorizationError):
            client.get("/api/audit-logs")

    def test_unreachable(self, http):
        http.request.side_effect = requests.ConnectionError("recusada")
        client = ApiClient("http://api.test", session=http)

        with pytest.raises(UpstreamError) as exc:
            client.get("/api/health")
        assert "recusada" in exc.value.message

    def test_login_keeps_token(self, http):
        http.request.return_value = make_response(200, {"token": "t1", "needs_role_selection": False})
        client = ApiClient("http://api.test", session=http)

        client.login("12345678901", "segredo1")

        assert client.token == "t1"

    def test_login_with_selection_keeps_no_token(self, http):
        http.request.return_value = make_response(200, {"selection_token": "s1", "needs_role_selection": True})
        client = ApiClient("http://api.test", session=http)

        data = client.login("12345678901", "segredo1")

        assert client.token is None
        assert data["selection_token"] == "s1"


class TestJwtHelpers:
    def test_payload_and_expiry(self):
        token = create_access_token("7", "client", ["client"])
        payload = jwt_payload(token)
        assert payload["sub"] == "7"
        assert payload["currentRole"] == "client"
        assert not jwt_is_expired(token)

    def test_garbage(self):
        assert jwt_payload("abc") == {}
        assert jwt_payload("a.b.c") == {}
